"""
Firebase Authentication backend.

Signs users in through the Identity Toolkit REST API
(accounts:signInWithPassword) and renews expired sessions through the
Secure Token API. Only the refresh token and its expiry are held, in memory;
signing out just drops them, as the Firebase web SDK does.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from cropview.models import Identity
from cropview.services.backends.base import BaseIdentityBackend
from cropview.services.errors import AuthError, TransientError

logger = logging.getLogger(__name__)


DEFAULT_AUTH_MESSAGE = "Failed to authenticate. Please check your credentials."

# Identity Toolkit error codes -> user-facing messages
AUTH_ERROR_MESSAGES = {
    "EMAIL_NOT_FOUND": "Invalid email or password.",
    "INVALID_PASSWORD": "Invalid email or password.",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password.",
    "INVALID_EMAIL": "Invalid email address.",
    "MISSING_PASSWORD": "Password is required.",
    "USER_DISABLED": "This account has been disabled.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many failed attempts. Try again later.",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        message = response.json().get("error", {}).get("message", "")
    except ValueError:
        return None
    # Messages look like "INVALID_PASSWORD" or "TOO_MANY_ATTEMPTS_TRY_LATER : details"
    return message.split(" : ")[0].strip() or None


class FirebaseIdentityBackend(BaseIdentityBackend):
    """
    Identity backend for Firebase email/password accounts.

    Session lifetime follows the ID token's ``expiresIn``. Once it has
    passed, check_expiry() exchanges the refresh token for a new one, as
    the Firebase web SDK does, and drops the identity only when the
    exchange is refused or fails (revoked, disabled or deleted account).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://identitytoolkit.googleapis.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
        token_url: str = "https://securetoken.googleapis.com/v1",
    ):
        super().__init__()
        if not api_key:
            raise ValueError("FIREBASE_API_KEY must be set for the firebase backend")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.token_url = token_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._clock = clock

        self._identity: Optional[Identity] = None
        self._refresh_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    @property
    def provider_name(self) -> str:
        return "firebase"

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    @retry(
        retry=retry_if_exception_type(TransientError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post(
        self,
        url: str,
        json: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    params={"key": self.api_key},
                    json=json,
                    data=data,
                )
        except httpx.HTTPError as e:
            logger.error(f"Firebase auth connection error: {e}")
            raise TransientError("Authentication service unavailable.") from e

        if response.status_code >= 500:
            logger.error(f"Firebase auth HTTP {response.status_code}")
            raise TransientError("Authentication service unavailable.")

        if response.status_code >= 400:
            code = _error_code(response)
            raise AuthError(AUTH_ERROR_MESSAGES.get(code, DEFAULT_AUTH_MESSAGE), code=code)

        return response.json()

    async def authenticate(self, email: str, password: str) -> Identity:
        data = await self._post(
            f"{self.base_url}/accounts:signInWithPassword",
            json={"email": email, "password": password, "returnSecureToken": True},
        )

        uid = data.get("localId")
        if not uid:
            raise AuthError(DEFAULT_AUTH_MESSAGE)

        self._store_session(data.get("refreshToken"), data.get("expiresIn"))
        self._identity = Identity(uid=uid, email=data.get("email", email))

        logger.info(f"Firebase sign-in succeeded for uid={uid}")
        await self._emit(self._identity)
        return self._identity

    async def deauthenticate(self) -> None:
        self._clear()
        await self._emit(None)

    def current_identity(self) -> Optional[Identity]:
        return self._identity

    async def check_expiry(self) -> None:
        if self._identity is None or self._expires_at is None:
            return
        if self._clock() < self._expires_at:
            return

        uid = self._identity.uid
        if self._refresh_token and await self._refresh_session(uid):
            return

        logger.info(f"Session expired for uid={uid}")
        self._clear()
        await self._emit(None)

    async def _refresh_session(self, uid: str) -> bool:
        """Exchanges the refresh token. Returns False when the session cannot be renewed."""
        try:
            data = await self._post(
                f"{self.token_url}/token",
                data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
            )
        except (AuthError, TransientError) as e:
            logger.warning(f"Session refresh failed for uid={uid}: {e}")
            return False

        if data.get("user_id", uid) != uid:
            logger.warning(f"Refreshed token belongs to another user than uid={uid}")
            return False

        self._store_session(data.get("refresh_token", self._refresh_token), data.get("expires_in"))
        logger.info(f"Session refreshed for uid={uid}")
        return True

    def _store_session(self, refresh_token: Optional[str], expires_in: Any) -> None:
        try:
            seconds = int(expires_in if expires_in is not None else 3600)
        except (TypeError, ValueError):
            seconds = 3600
        self._refresh_token = refresh_token
        self._expires_at = self._clock() + timedelta(seconds=seconds)

    def _clear(self) -> None:
        self._identity = None
        self._refresh_token = None
        self._expires_at = None
