"""contact_reconciler.auth - Bearer token providers for directory clients."""

from contact_reconciler.auth.tokens import (
    EnvTokenProvider,
    GoogleCredentialsTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)

__all__ = [
    "TokenProvider",
    "StaticTokenProvider",
    "EnvTokenProvider",
    "GoogleCredentialsTokenProvider",
]
