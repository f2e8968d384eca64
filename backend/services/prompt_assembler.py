"""Grounded prompt assembly for document question answering."""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import tiktoken

from models.chunk import ScoredChunk
from models.conversation import Turn, USER
from services.retrieval_engine import truncate_context
from exceptions import InputError
from config import MAX_CONTEXT_LENGTH, MAX_PROMPT_PASSAGES

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
HISTORY_SUMMARY_TURNS = 6
HISTORY_TURN_MAX_CHARS = 300
GENERAL_HISTORY_TURNS = 8

SYSTEM_PROMPT = """You are an intelligent assistant helping students understand their course materials. Your responses should be:

1. Accurate and based only on the provided passages
2. Educational and easy to understand
3. Well-structured with clear explanations
4. Include page references when citing information, using the page labels exactly as given
5. Acknowledge when information is not available in the passages
6. Use LaTeX formatting for mathematical expressions: $expression$ inline and $$expression$$ for display math

Always respond in JSON format with "answer" and "citations" fields."""

GENERAL_SYSTEM_PROMPT = (
    "You are a helpful educational assistant. Provide clear, accurate, and educational "
    "responses to help students learn better. When explaining mathematical concepts, use "
    "LaTeX formatting: $expression$ for inline math and $$expression$$ for display math."
)

_encoder = None


def count_tokens(text: str) -> int:
    """Estimate prompt tokens with tiktoken, falling back to chars / 4 if the encoding cannot load."""
    global _encoder
    if not text:
        return 0
    if _encoder is None:
        try:
            _encoder = tiktoken.get_encoding("o200k_base")
        except Exception as e:
            logger.warning(f"tiktoken encoding unavailable, estimating tokens from length: {e}")
            _encoder = False
    if _encoder:
        return len(_encoder.encode(text))
    return max(1, len(text) // 4)


def sanitize_message(message: Optional[str], max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Trim, strip angle brackets and cap the length of a user message.

    Raises:
        InputError: If message is not a string or is empty after sanitization
    """
    if not message or not isinstance(message, str):
        raise InputError("Invalid message: must be a non-empty string")

    sanitized = message.strip().replace("<", "").replace(">", "")[:max_length].strip()
    if not sanitized:
        raise InputError("Message cannot be empty after sanitization")

    return sanitized


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


@dataclass
class AssembledPrompt:
    """Everything needed for one completion call."""
    system_prompt: str
    messages: List[Dict[str, str]]
    passages: List[ScoredChunk] = field(default_factory=list)
    token_estimate: int = 0

    @property
    def page_labels(self) -> List[str]:
        return [p.chunk.page_label for p in self.passages]


class PromptAssembler:
    """Builds budget-constrained prompts grounded in retrieved passages."""

    def __init__(
        self,
        max_passages: int = MAX_PROMPT_PASSAGES,
        max_context_chars: int = MAX_CONTEXT_LENGTH,
        history_turns: int = HISTORY_SUMMARY_TURNS
    ):
        self.max_passages = max_passages
        self.max_context_chars = max_context_chars
        self.history_turns = history_turns

    def select_passages(
        self,
        results: Sequence[ScoredChunk],
        max_context_chars: Optional[int] = None
    ) -> List[ScoredChunk]:
        """Top-N results by similarity (ties by chunk_index), then the character budget."""
        budget = self.max_context_chars if max_context_chars is None else max_context_chars
        ranked = sorted(results, key=lambda r: (-r.similarity, r.chunk.chunk_index))
        return truncate_context(ranked[:self.max_passages], budget)

    def assemble(
        self,
        message: str,
        results: Sequence[ScoredChunk],
        turns: Sequence[Turn] = (),
        max_context_chars: Optional[int] = None
    ) -> AssembledPrompt:
        """
        Build the grounded RAG prompt.

        Args:
            message: Sanitized user message
            results: Ranked retrieval results
            turns: Recent conversation turns, oldest first
            max_context_chars: Passage budget override

        Returns:
            AssembledPrompt whose only page labels come from the selected passages
        """
        passages = self.select_passages(results, max_context_chars)

        sections = []
        history = self.summarize_history(turns)
        if history:
            sections.append(f"Recent conversation (for continuity only):\n{history}")

        sections.append(
            "Use ONLY the provided passages to answer the user's question. "
            "If the answer cannot be found in the passages, say so clearly. "
            "Always cite pages using the exact page labels shown in the passages."
        )
        sections.append(f"Passages:\n{self.render_passages(passages)}")
        sections.append(f"User question: {message}")
        sections.append(self._format_instructions(passages))

        prompt = "\n\n".join(sections)
        messages = [{"role": "user", "content": prompt}]
        token_estimate = count_tokens(SYSTEM_PROMPT) + count_tokens(prompt)

        logger.debug(
            f"Assembled RAG prompt: {len(passages)} passages, "
            f"{len(prompt)} chars, ~{token_estimate} tokens"
        )
        return AssembledPrompt(
            system_prompt=SYSTEM_PROMPT,
            messages=messages,
            passages=passages,
            token_estimate=token_estimate,
        )

    def assemble_general(self, message: str, turns: Sequence[Turn] = ()) -> AssembledPrompt:
        """Conversation-only prompt for turns with no document passages."""
        messages = [
            {"role": turn.role, "content": turn.content}
            for turn in list(turns)[-GENERAL_HISTORY_TURNS:]
        ]
        messages.append({"role": "user", "content": message})
        token_estimate = count_tokens(GENERAL_SYSTEM_PROMPT) + sum(count_tokens(m["content"]) for m in messages)
        return AssembledPrompt(
            system_prompt=GENERAL_SYSTEM_PROMPT,
            messages=messages,
            token_estimate=token_estimate,
        )

    @staticmethod
    def render_passages(passages: Sequence[ScoredChunk]) -> str:
        """Indexed, page-labeled passages; multi-page ranges are kept verbatim."""
        return "\n\n".join(
            f"[{index}] Page {result.chunk.page_label}: {result.chunk.text}"
            for index, result in enumerate(passages, start=1)
        )

    def summarize_history(self, turns: Sequence[Turn]) -> str:
        """Role-labeled, truncated lines for the last few turns."""
        recent = list(turns)[-self.history_turns:] if self.history_turns > 0 else []
        lines = []
        for turn in recent:
            role = "User" if turn.role == USER else "Assistant"
            lines.append(f"{role}: {_truncate(turn.content, HISTORY_TURN_MAX_CHARS)}")
        return "\n".join(lines)

    @staticmethod
    def _format_instructions(passages: Sequence[ScoredChunk]) -> str:
        # The example must never show a page label the passages do not contain
        example_page = passages[0].chunk.page_label if passages else "<page label>"
        return (
            "Respond with a JSON object in exactly this format:\n"
            "{\n"
            '  "answer": "Your detailed answer, citing page labels where appropriate",\n'
            '  "citations": [\n'
            f'    {{"page": "{example_page}", "snippet": "short supporting quote from that passage"}}\n'
            "  ]\n"
            "}\n"
            "Each citation page must be one of the page labels shown in the passages above."
        )
