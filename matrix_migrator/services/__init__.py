"""Session capabilities and the Matrix client-server API adapter."""

__all__ = [
    "matrix_client",
    "session",
]
