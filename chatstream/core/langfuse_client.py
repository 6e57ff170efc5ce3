from langfuse import Langfuse
from .config import settings

# Shared client; without credentials it stays a no-op so local runs and tests need no account.
langfuse = Langfuse(
    secret_key=settings.LANGFUSE_SECRET_KEY,
    public_key=settings.LANGFUSE_PUBLIC_KEY,
    host=settings.LANGFUSE_HOST,
    tracing_enabled=bool(settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY),
    debug=False
)
