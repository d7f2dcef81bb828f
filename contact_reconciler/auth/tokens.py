"""
Bearer token providers for directory clients.

A TokenProvider hands out a currently valid access token. Refreshing an
expired token is the provider's job; clients just call get_token() before
each request and raise AuthExpiredError when the directory rejects it.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from contact_reconciler.api.base import AuthExpiredError

logger = logging.getLogger(__name__)

# Google People API scope needed for read and write-back
GOOGLE_CONTACTS_SCOPES = ["https://www.googleapis.com/auth/contacts"]

# Environment variable template for tokens supplied from outside
TOKEN_ENV_TEMPLATE = "CONTACT_RECONCILER_{provider}_TOKEN"


@runtime_checkable
class TokenProvider(Protocol):
    """Supplies a valid bearer credential."""

    def get_token(self) -> str:
        """
        Return a valid access token.

        Raises:
            AuthExpiredError: If no valid token can be produced
        """
        ...


class StaticTokenProvider:
    """A fixed token, for tests and short-lived scripts."""

    def __init__(self, token: str):
        self._token = token

    def get_token(self) -> str:
        if not self._token:
            raise AuthExpiredError("No access token configured")
        return self._token


class EnvTokenProvider:
    """Reads the token from an environment variable on every call."""

    def __init__(self, env_var: str):
        self.env_var = env_var

    @classmethod
    def for_provider(cls, provider: str) -> "EnvTokenProvider":
        return cls(TOKEN_ENV_TEMPLATE.format(provider=provider.upper()))

    def get_token(self) -> str:
        token = os.environ.get(self.env_var)
        if not token:
            raise AuthExpiredError(f"Environment variable {self.env_var} is not set")
        return token


class GoogleCredentialsTokenProvider:
    """
    Token provider backed by google-auth user credentials.

    Refreshes the access token with the stored refresh token when it has
    expired; a failed refresh surfaces as AuthExpiredError.

    Usage:
        provider = GoogleCredentialsTokenProvider.from_authorized_user_file(
            Path('~/.contact-reconciler/google_token.json')
        )
        token = provider.get_token()
    """

    def __init__(self, credentials: Credentials):
        self.credentials = credentials
        self._lock = threading.Lock()

    @classmethod
    def from_authorized_user_file(
        cls, path: Path, scopes: Optional[list[str]] = None
    ) -> "GoogleCredentialsTokenProvider":
        """
        Load credentials saved by an OAuth flow.

        Raises:
            AuthExpiredError: If the file is missing or unreadable
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise AuthExpiredError(f"Credentials file not found: {path}")
        try:
            credentials = Credentials.from_authorized_user_file(
                str(path), scopes or GOOGLE_CONTACTS_SCOPES
            )
        except (ValueError, OSError) as e:
            raise AuthExpiredError(f"Invalid credentials file {path}: {e}") from e
        return cls(credentials)

    def get_token(self) -> str:
        with self._lock:
            creds = self.credentials
            if not creds.valid:
                if not creds.refresh_token:
                    raise AuthExpiredError("Credentials expired and cannot be refreshed")
                try:
                    creds.refresh(Request())
                    logger.debug("Refreshed Google access token")
                except RefreshError as e:
                    raise AuthExpiredError(f"Failed to refresh credentials: {e}") from e
            if not creds.token:
                raise AuthExpiredError("Credentials carry no access token")
            return creds.token
