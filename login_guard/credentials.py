"""Credential verification against the remote auth service."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from supabase import AuthApiError, AuthError, Client, create_client

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Base class for credential verification failures."""


class InvalidCredentialsError(CredentialError):
    """The remote service rejected the e-mail/password pair."""


class CredentialServiceError(CredentialError):
    """The remote service could not be reached or answered unexpectedly."""


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    email: str
    access_token: str
    refresh_token: str


class CredentialVerifier(Protocol):
    def verify(self, email: str, password: str) -> AuthSession:
        ...


class SupabaseCredentialVerifier:
    """Password sign-in through Supabase Auth.

    The client is created on first use so the application can start before
    the remote service is reachable.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        client_factory: Callable[[str, str], Client] = create_client,
    ) -> None:
        self.url = url
        self._anon_key = anon_key
        self._client_factory = client_factory
        self._client: Optional[Client] = None
        self._lock = threading.Lock()

    def _get_client(self) -> Client:
        with self._lock:
            if self._client is None:
                self._client = self._client_factory(self.url, self._anon_key)
            return self._client

    def verify(self, email: str, password: str) -> AuthSession:
        client = self._get_client()
        try:
            response = client.auth.sign_in_with_password({"email": email, "password": password})
        except AuthApiError as exc:
            if exc.status is not None and (exc.status == 429 or exc.status >= 500):
                raise CredentialServiceError(exc.message) from exc
            raise InvalidCredentialsError(exc.message) from exc
        except AuthError as exc:
            logger.error("auth service error", extra={"error": str(exc)})
            raise CredentialServiceError(str(exc)) from exc

        session = getattr(response, "session", None)
        user = getattr(response, "user", None)
        if session is None or user is None:
            raise InvalidCredentialsError("sign-in returned no session")
        return AuthSession(
            user_id=str(user.id),
            email=user.email or email,
            access_token=session.access_token,
            refresh_token=session.refresh_token,
        )
