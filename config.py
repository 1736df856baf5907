# config.py
"""Application configuration"""
from typing import List, Optional
from pydantic_settings import BaseSettings
from utils.common import get_log_file_path

class Settings(BaseSettings):
    """Loads configuration from environment variables and an optional .env file."""

    # Logger configuration
    LOGGER_NAME: str = "doc_rag"
    LOG_FILE_PATH: str = get_log_file_path()
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./rag.db"

    # Vector index
    VECTOR_DB_PATH: str = "./vector_db"
    VECTOR_SNAPSHOT_FILENAME: str = "vector_data.json"
    VECTOR_SCAN_OFFLOAD_THRESHOLD: int = 5000  # rows scanned inline before moving to a thread

    # Embedding model
    EMBEDDING_MODEL_NAME: str = "BAAI/bge-small-zh-v1.5"
    EMBEDDING_MAX_INPUT_CHARS: int = 512
    EMBEDDING_BATCH_SIZE: int = 50
    EMBEDDING_BATCH_PAUSE_SEC: float = 0.1

    # Chunking
    CHUNK_SIZE: int = 300
    CHUNK_OVERLAP: int = 50
    CHUNK_MIN_RATIO: float = 0.3  # separator splits shorter than this share of CHUNK_SIZE are rejected
    CHUNK_SEPARATORS: List[str] = ["\n\n", "\n", "。", "！", "？", ";", "；", ".", "!", "?"]

    # Search
    DEFAULT_TOP_K: int = 5
    MAX_TOP_K: int = 20
    DEFAULT_SIMILARITY_THRESHOLD: float = 0.3
    SEARCH_OVERFETCH_FACTOR: int = 2
    MAX_VECTORIZE_TEXTS: int = 100
    PREVIEW_LENGTH: int = 200

    # Index rebuild scheduling
    REBUILD_DEBOUNCE_SEC: float = 5.0
    REBUILD_MIN_INTERVAL_SEC: float = 30.0
    REBUILD_COMMIT_DELAY_SEC: float = 0.5

    # RAG
    MAX_QUESTION_LENGTH: int = 1000
    MAX_BATCH_QUESTIONS: int = 10
    BATCH_REQUEST_PAUSE_SEC: float = 1.0
    LLM_MAX_TOKENS: int = 2048
    LLM_MAX_TOKENS_LIMIT: int = 4096
    LLM_TEMPERATURE: float = 0.7
    LLM_TEMPERATURE_LIMIT: float = 2.0

    # LLM provider selection
    LLM_PROVIDER: Optional[str] = None
    LLM_PROVIDER_PRIORITY: List[str] = [
        "openai", "azure", "anthropic", "qwen", "zhipu", "kimi", "doubao"
    ]
    LLM_FALLBACK_PROVIDER: Optional[str] = None
    LLM_FALLBACK_TO_LOCAL: bool = True
    LLM_REQUEST_TIMEOUT: int = 60

    # Local model server (LM Studio / Ollama)
    LOCAL_LLM_KIND: str = "lmstudio"  # Options: lmstudio, ollama
    LOCAL_LLM_BASE_URL: str = "http://localhost:1234/v1"
    LOCAL_LLM_MODEL: str = "local-model"

    # Remote providers
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-3.5-turbo"

    AZURE_OPENAI_API_KEY: Optional[str] = None
    AZURE_OPENAI_ENDPOINT: Optional[str] = None
    AZURE_OPENAI_DEPLOYMENT_NAME: Optional[str] = None
    AZURE_OPENAI_API_VERSION: str = "2023-12-01-preview"

    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"
    ANTHROPIC_MODEL: str = "claude-3-sonnet-20240229"

    QWEN_API_KEY: Optional[str] = None
    QWEN_BASE_URL: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    QWEN_MODEL: str = "qwen-turbo"

    ZHIPU_API_KEY: Optional[str] = None
    ZHIPU_BASE_URL: str = "https://open.bigmodel.cn/api/paas/v4"
    ZHIPU_MODEL: str = "glm-4-flash"

    KIMI_API_KEY: Optional[str] = None
    KIMI_BASE_URL: str = "https://api.moonshot.cn/v1"
    KIMI_MODEL: str = "moonshot-v1-8k"

    DOUBAO_API_KEY: Optional[str] = None
    DOUBAO_BASE_URL: str = "https://ark.cn-beijing.volces.com/api/v3"
    DOUBAO_MODEL: str = "doubao-pro-4k"

    # App metadata
    APP_TITLE: str = "Document RAG System"
    APP_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
