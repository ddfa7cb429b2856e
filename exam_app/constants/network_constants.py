"""Network configuration constants for the exam service."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
AUTH_HEADER_SCHEME: str = "Bearer"
