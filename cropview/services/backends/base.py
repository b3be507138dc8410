"""
Base classes for identity and document backends.

Defines the interface that all backends must implement.
This abstraction allows swapping Firebase for the in-memory backend
without changing the session store or the repository.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from cropview.models import Identity

logger = logging.getLogger(__name__)


IdentityListener = Callable[[Optional[Identity]], Awaitable[None]]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class Document:
    """A document read from a collection."""
    id: str
    fields: dict[str, Any] = field(default_factory=dict)


class BaseIdentityBackend(ABC):
    """
    Abstract base class for identity backends.

    All backends must implement:
    - authenticate: Credential check, returns the signed-in Identity
    - deauthenticate: Drops the current identity
    - current_identity: Identity held right now (None when signed out)

    Listener fan-out is shared: every change goes through _emit, which
    awaits each registered callback in registration order.
    """

    def __init__(self) -> None:
        self._listeners: list[IdentityListener] = []

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Returns the backend name (e.g., 'firebase', 'memory')."""
        pass

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> Identity:
        """
        Signs in with email and password.

        Raises:
            AuthError: Bad credentials or account refused
            TransientError: Backend unreachable
        """
        pass

    @abstractmethod
    async def deauthenticate(self) -> None:
        """Signs the current identity out. Raises AuthError on failure."""
        pass

    @abstractmethod
    def current_identity(self) -> Optional[Identity]:
        pass

    async def check_expiry(self) -> None:
        """Drops the identity (and notifies listeners) once its session has expired."""
        return None

    def on_identity_change(self, callback: IdentityListener) -> Unsubscribe:
        """
        Registers a listener for identity changes.

        The current state is not replayed; read current_identity() after
        subscribing.

        Returns:
            Unsubscribe handle (safe to call more than once)
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def _emit(self, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(identity)
            except Exception:
                logger.exception("Identity listener failed")


class BaseDocumentBackend(ABC):
    """
    Abstract base class for document backends.

    Implementations translate their SDK errors into NotFoundError,
    UnauthorizedError and TransientError.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def read_collection(self, name: str) -> list[Document]:
        """Returns every document of a collection (no paging)."""
        pass

    @abstractmethod
    async def read_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        """
        Returns the fields of one document.

        Raises:
            NotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
    ) -> None:
        """
        Partially updates a document, touching only the given fields.

        Raises:
            NotFoundError: If the document does not exist
        """
        pass
