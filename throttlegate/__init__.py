"""Fixed-window request rate limiting for FastAPI/Starlette apps."""

__version__ = "0.1.0"
