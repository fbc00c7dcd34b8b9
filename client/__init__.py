"""HTTP client that keeps a session alive across access-token expiry."""
from client.session import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    TOKEN_EXPIRY_KEY,
    FileTokenStorage,
    SessionClient,
    TokenStorage,
)

__all__ = [
    "ACCESS_TOKEN_KEY",
    "REFRESH_TOKEN_KEY",
    "TOKEN_EXPIRY_KEY",
    "FileTokenStorage",
    "SessionClient",
    "TokenStorage",
]
