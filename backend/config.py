"""Configuration management for the PDF Study Assistant chat core."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
EMBEDDING_API_KEY = os.getenv("EMBEDDING_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173"
).split(",")

# Model Configuration
EMBEDDING_API_URL = os.getenv("EMBEDDING_API_URL", "https://api.studio.nebius.com/v1/embeddings")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "Qwen/Qwen3-Embedding-8B")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama-3.3-70b-versatile")

# Chunking Configuration
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))  # characters
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "100"))  # characters
MIN_CHUNK_SIZE = int(os.getenv("MIN_CHUNK_SIZE", "100"))

# Retrieval Configuration
TOP_K_CHUNKS = int(os.getenv("TOP_K_CHUNKS", "5"))
MAX_CONTEXT_LENGTH = int(os.getenv("MAX_CONTEXT_LENGTH", "4000"))  # characters
SIMILARITY_FLOOR = float(os.getenv("SIMILARITY_FLOOR", "0.1"))
MAX_PROMPT_PASSAGES = 8

# Conversation Cache Configuration
MAX_MESSAGES_PER_CHAT = int(os.getenv("MAX_MESSAGES_PER_CHAT", "20"))
CACHE_CLEANUP_INTERVAL_SECONDS = float(os.getenv("CACHE_CLEANUP_INTERVAL_SECONDS", "300"))
CACHE_INACTIVE_TIMEOUT_SECONDS = float(os.getenv("CACHE_INACTIVE_TIMEOUT_SECONDS", "1800"))
MAX_CACHED_CHATS = int(os.getenv("MAX_CACHED_CHATS", "1000"))

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
