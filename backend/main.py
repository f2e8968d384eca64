"""Main entry point for the PDF Study Assistant chat API."""
import logging
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import PORT, CORS_ORIGINS, LOG_LEVEL, EMBEDDING_API_KEY
from exceptions import InputError, ProviderUnavailableError
from logger import setup_logging
from models.api import ChatRequest, ChatResponse, ChatMetadata, CitationOut
from services.embedding_model import EmbeddingModel
from services.vector_store import VectorStore
from services.retrieval_engine import RetrievalEngine
from services.conversation_store import ConversationStore
from services.conversation_cache import ConversationCache
from services.llm_client import LLMClient
from services.chat_service import ChatService

# Initialize logging
setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="PDF Study Assistant",
    description="Chat with your PDFs: grounded answers with page citations",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
chat_service: ChatService = None
conversation_cache: ConversationCache = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global chat_service, conversation_cache

    logger.info("Initializing PDF Study Assistant services...")

    try:
        embedding_model = None
        if EMBEDDING_API_KEY:
            embedding_model = EmbeddingModel()
        else:
            logger.warning("EMBEDDING_API_KEY not set; retrieval will use lexical fallback only")

        vector_store = VectorStore()
        retrieval_engine = RetrievalEngine(vector_store, embedding_model)
        logger.info("Initialized RetrievalEngine")

        conversation_cache = ConversationCache(ConversationStore())
        conversation_cache.start()
        logger.info("Initialized ConversationCache")

        chat_service = ChatService(retrieval_engine, conversation_cache, LLMClient())
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the cache sweeper."""
    if conversation_cache is not None:
        conversation_cache.stop()
        logger.info("Conversation cache stopped")


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "pdf-study-assistant",
        "version": "1.0.0",
        "services_ready": chat_service is not None
    }


@app.get("/cache/stats")
async def cache_stats():
    """Conversation cache statistics."""
    if conversation_cache is None:
        raise HTTPException(status_code=503, detail="Conversation cache not initialized")
    return conversation_cache.stats()


@app.post("/chat", response_model=ChatResponse)
def chat_endpoint(request: ChatRequest) -> ChatResponse:
    """
    Answer one chat message, grounded in the given PDF when pdf_id is set.

    Raises:
        HTTPException: 400 for invalid input, 503 when providers are exhausted
    """
    if chat_service is None:
        raise HTTPException(status_code=503, detail="Chat service not initialized")

    try:
        result = chat_service.process_turn(
            chat_id=request.chat_id,
            user_message=request.message,
            document_id=request.pdf_id,
            user_id=request.user_id
        )
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderUnavailableError as e:
        logger.error(f"Providers unavailable for chat {request.chat_id}: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error processing chat {request.chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    return ChatResponse(
        answer=result.answer,
        citations=[
            CitationOut(page=c.page, snippet=c.snippet, confidence=c.confidence)
            for c in result.citations
        ],
        metadata=ChatMetadata(
            chat_id=result.chat_id,
            pdf_id=result.pdf_id,
            chunks_used=result.chunks_used,
            context_messages=result.context_messages,
            timestamp=result.timestamp
        )
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting server on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
