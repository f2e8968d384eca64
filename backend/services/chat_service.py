"""Per-turn chat pipeline: retrieve, assemble, complete, parse, remember."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from models.chunk import ScoredChunk
from models.conversation import ConversationContext
from models.response import Citation, ParsedResponse, ParseStrategy, TurnResult
from services.retrieval_engine import RetrievalEngine
from services.conversation_cache import ConversationCache
from services.prompt_assembler import PromptAssembler, AssembledPrompt, sanitize_message
from services.response_parser import parse_ai_response
from services.llm_client import LLMClient, LLMClientError
from exceptions import ProviderUnavailableError
from config import TOP_K_CHUNKS

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_ANSWER = (
    "I found relevant information in your PDF, but received an empty response "
    "from the AI model. Please try asking your question again."
)
DEGRADED_ANSWER_PREFIX = (
    "I found relevant information in the PDF but encountered an issue generating "
    "a response. Here's what I found from the context:"
)
FALLBACK_SNIPPET_LENGTH = 150
DEGRADED_EXCERPT_LENGTH = 200


class ChatService:
    """Orchestrates one grounded chat turn end to end."""

    def __init__(
        self,
        retrieval_engine: RetrievalEngine,
        conversation_cache: ConversationCache,
        llm_client: LLMClient,
        prompt_assembler: Optional[PromptAssembler] = None,
        top_k: int = TOP_K_CHUNKS
    ):
        self.retrieval_engine = retrieval_engine
        self.conversation_cache = conversation_cache
        self.llm_client = llm_client
        self.prompt_assembler = prompt_assembler or PromptAssembler()
        self.top_k = top_k

    def process_turn(
        self,
        chat_id: str,
        user_message: str,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> TurnResult:
        """
        Answer one user message, grounded in the document when one is given.

        Args:
            chat_id: Chat session identifier
            user_message: Raw user message
            document_id: Document to ground the answer in (optional)
            user_id: Owner of the session; enables conversation memory (optional)

        Returns:
            TurnResult with answer, citations, and bookkeeping counts

        Raises:
            InputError: If the message is empty or invalid
            ProviderUnavailableError: If no passages were available and completion failed
        """
        message = sanitize_message(user_message)

        context: Optional[ConversationContext] = None
        if user_id:
            context = self.conversation_cache.get(chat_id, user_id)
            logger.info(
                f"Conversation context for chat {chat_id}: "
                f"{len(context.turns) if context else 0} previous turns"
            )
        turns = context.turns if context else ()

        results: List[ScoredChunk] = []
        if document_id:
            results = self.retrieval_engine.retrieve(document_id, message, self.top_k)

        prompt = self.prompt_assembler.assemble(message, results, turns) if results else None
        passages: List[ScoredChunk] = prompt.passages if prompt else []

        degraded = False
        if passages:
            response, degraded = self._grounded_response(prompt)
        else:
            response = self._general_response(message, turns)

        citations = response.citations
        if not citations and not degraded and passages:
            citations = self._citations_from_passages(passages)

        if user_id:
            try:
                self.conversation_cache.append(chat_id, user_id, message, response.answer, document_id)
            except Exception as e:
                logger.error(f"Error saving turn for chat {chat_id} to cache: {e}")

        logger.info(
            f"Processed turn for chat {chat_id}: chunks_used={len(passages)}, "
            f"citations={len(citations)}, strategy={response.strategy.value}"
        )
        return TurnResult(
            answer=response.answer,
            citations=citations,
            chunks_used=len(passages),
            context_messages=len(turns),
            chat_id=chat_id,
            pdf_id=document_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def _grounded_response(self, prompt: AssembledPrompt):
        """Complete and parse a RAG prompt. Returns (response, degraded)."""
        logger.info(
            f"Requesting grounded completion: {len(prompt.passages)} passages, "
            f"~{prompt.token_estimate} prompt tokens"
        )
        try:
            completion = self.llm_client.complete(
                prompt.system_prompt, prompt.messages, temperature=0.3, max_tokens=2048
            )
        except LLMClientError as e:
            logger.warning(f"Completion failed ({e.error.code}); answering with raw excerpts")
            return self._degraded_response(prompt.passages), True

        if not completion.text.strip():
            logger.warning("Empty response from completion provider")
            return ParsedResponse(answer=EMPTY_RESPONSE_ANSWER, citations=[]), True

        return parse_ai_response(completion.text), False

    def _general_response(self, message: str, turns) -> ParsedResponse:
        """Conversation-only completion; failure here means nothing is left to fall back on."""
        prompt = self.prompt_assembler.assemble_general(message, turns)
        try:
            completion = self.llm_client.complete(
                prompt.system_prompt, prompt.messages, temperature=0.6, max_tokens=1024
            )
        except LLMClientError as e:
            logger.error(f"Completion failed with no passages to fall back on: {e.error.code}")
            raise ProviderUnavailableError(
                "The AI service is currently unavailable. Please try again later."
            ) from e

        return ParsedResponse(
            answer=completion.text.strip(),
            citations=[],
            strategy=ParseStrategy.RAW_FALLBACK,
        )

    @staticmethod
    def _degraded_response(passages: List[ScoredChunk]) -> ParsedResponse:
        excerpts = "\n\n".join(
            p.chunk.text[:DEGRADED_EXCERPT_LENGTH] + "..." for p in passages
        )
        return ParsedResponse(answer=f"{DEGRADED_ANSWER_PREFIX}\n\n{excerpts}", citations=[])

    @staticmethod
    def _citations_from_passages(passages: List[ScoredChunk]) -> List[Citation]:
        citations = []
        for passage in passages:
            text = passage.chunk.text
            snippet = text[:FALLBACK_SNIPPET_LENGTH] + ("..." if len(text) > FALLBACK_SNIPPET_LENGTH else "")
            citations.append(Citation(
                page=passage.chunk.page_label,
                snippet=snippet,
                confidence=f"{round(passage.similarity, 2):.2f}",
            ))
        return citations
