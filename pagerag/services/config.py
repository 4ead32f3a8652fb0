"""
Configuration settings for the page RAG service
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
import json


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Configuration
    API_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=True)

    CORS_ORIGINS: List[str] = Field(default=["http://localhost:3000"])

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from JSON string if needed"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not JSON, treat as comma-separated list
                return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Embedding provider (OpenAI-compatible /embeddings endpoint)
    EMBEDDING_API_URL: str = Field(default="https://api.upstage.ai/v1/embeddings")
    EMBEDDING_API_KEY: Optional[str] = Field(default=None)
    EMBEDDING_MODEL: str = Field(default="embedding-query")
    QUERY_EMBEDDING_MODEL: Optional[str] = Field(default=None)  # falls back to EMBEDDING_MODEL
    EMBEDDING_DIMENSION: int = Field(default=1024, gt=0)
    EMBEDDING_MAX_INPUT_CHARS: int = Field(default=8000, gt=0)
    EMBEDDING_MAX_RETRIES: int = Field(default=3, ge=1)
    EMBEDDING_RETRY_DELAY: float = Field(default=1.0, ge=0.0)  # seconds, multiplied by attempt
    EMBEDDING_BATCH_SIZE: int = Field(default=10, gt=0)
    EMBEDDING_BATCH_DELAY: float = Field(default=0.5, ge=0.0)  # pacing between batches

    # Generation provider (OpenAI-compatible /chat/completions endpoint)
    CHAT_API_URL: str = Field(default="https://api.upstage.ai/v1/chat/completions")
    CHAT_API_KEY: Optional[str] = Field(default=None)
    CHAT_MODEL: str = Field(default="solar-1-mini-chat")
    MAX_TOKENS: int = Field(default=1000, gt=0)
    TEMPERATURE: float = Field(default=0.7, ge=0.0, le=2.0)

    REQUEST_TIMEOUT: float = Field(default=30.0, gt=0)

    # Page segmentation
    SEGMENT_CHUNK_SIZE: int = Field(default=1000, gt=0)
    SEGMENT_CHUNK_OVERLAP: int = Field(default=200, ge=0)
    WORDS_PER_MINUTE: int = Field(default=200, gt=0)  # average Korean reading speed

    # Embedding chunking
    CHUNK_SIZE: int = Field(default=500, gt=0)
    CHUNK_OVERLAP: int = Field(default=50, ge=0)

    # Retrieval
    TOP_K: int = Field(default=5, gt=0)
    SIMILARITY_THRESHOLD: float = Field(default=0.7, ge=0.0, le=1.0)
    MAX_CONTEXT_LENGTH: int = Field(default=4000, gt=0)  # characters

    # Vector store
    QDRANT_URL: str = Field(default="http://localhost:6333")
    QDRANT_API_KEY: Optional[str] = Field(default=None)
    QDRANT_COLLECTION: str = Field(default="page-embeddings")

    # Session store
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: Optional[str] = Field(default=None)
    REDIS_DB: int = Field(default=0)
    HISTORY_LIMIT: int = Field(default=50, gt=0)

    # System Prompts and Templates
    SYSTEM_PROMPT: str = Field(
        default="""당신은 한국어 교육 전문 AI 어시스턴트입니다. 제공된 교재 내용을 바탕으로 학습자의 질문에 정확하고 도움이 되는 답변을 제공하세요.

답변 지침:
1. 제공된 컨텍스트만을 바탕으로 답변하세요
2. 한국어로 명확하고 이해하기 쉽게 설명하세요
3. 교육적 가치가 있는 답변을 제공하세요
4. 컨텍스트에 없는 정보는 추측하지 마세요
5. 필요시 예시나 추가 설명을 포함하세요"""
    )

    NO_CONTEXT_MESSAGE: str = Field(
        default="죄송합니다. 해당 페이지에서 관련된 정보를 찾을 수 없습니다. 다른 방식으로 질문해 보시거나, 더 구체적인 질문을 해주세요."
    )

    # Feature Flags
    ENABLE_METRICS: bool = Field(default=True)

    @model_validator(mode="after")
    def _overlaps_smaller_than_sizes(self) -> "Settings":
        if self.CHUNK_OVERLAP >= self.CHUNK_SIZE:
            raise ValueError(
                f"CHUNK_OVERLAP ({self.CHUNK_OVERLAP}) must be less than CHUNK_SIZE ({self.CHUNK_SIZE})"
            )
        if self.SEGMENT_CHUNK_OVERLAP >= self.SEGMENT_CHUNK_SIZE:
            raise ValueError(
                f"SEGMENT_CHUNK_OVERLAP ({self.SEGMENT_CHUNK_OVERLAP}) must be less than "
                f"SEGMENT_CHUNK_SIZE ({self.SEGMENT_CHUNK_SIZE})"
            )
        return self

    def get_redis_url(self) -> str:
        """Get Redis connection URL"""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def query_embedding_model(self) -> str:
        return self.QUERY_EMBEDDING_MODEL or self.EMBEDDING_MODEL
