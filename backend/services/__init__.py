"""Services for the PDF Study Assistant chat core."""
from .document_loader import DocumentLoader
from .chunking_engine import ChunkingEngine
from .embedding_model import EmbeddingModel
from .vector_store import VectorStore
from .retrieval_engine import RetrievalEngine
from .conversation_store import ConversationStore
from .conversation_cache import ConversationCache, CacheConfig
from .prompt_assembler import PromptAssembler, AssembledPrompt
from .response_parser import parse_ai_response
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .ingestion import DocumentIngestor, IngestionReport
from .chat_service import ChatService

__all__ = [
    'DocumentLoader', 'ChunkingEngine', 'EmbeddingModel', 'VectorStore', 'RetrievalEngine',
    'ConversationStore', 'ConversationCache', 'CacheConfig', 'PromptAssembler', 'AssembledPrompt',
    'parse_ai_response', 'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError',
    'DocumentIngestor', 'IngestionReport', 'ChatService',
]
