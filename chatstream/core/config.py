from typing import List, Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./chatstream.db"

    # Any OpenAI-compatible chat completions endpoint
    UPSTREAM_API_KEY: str = ""
    UPSTREAM_BASE_URL: str = "https://api.perplexity.ai"
    UPSTREAM_MODEL: str = "sonar"
    UPSTREAM_MAX_TOKENS: int = 1000
    UPSTREAM_TEMPERATURE: float = 0.7
    UPSTREAM_TIMEOUT: float = 60.0
    UPSTREAM_MAX_RETRIES: int = 2
    SYSTEM_PROMPT: str = (
        "You are a helpful AI assistant. Be concise and accurate in your responses. "
        "If files are provided, analyze them and provide relevant insights."
    )

    # "stream" relays upstream increments, "simulate" splits a single-shot reply into words
    RELAY_MODE: Literal["stream", "simulate"] = "stream"
    SIMULATED_STREAM_DELAY_MS: int = 100

    CONVERSATION_LIST_LIMIT: int = 50
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # Langfuse credentials, tracing is disabled when they are missing
    LANGFUSE_HOST: Optional[str] = None
    LANGFUSE_SECRET_KEY: Optional[str] = None
    LANGFUSE_PUBLIC_KEY: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
