"""
In-memory backends for local development.

In production, Firebase Authentication and Cloud Firestore back the app.
This module simulates both so the dashboards can be run and tested
without a Firebase project.

Demo accounts (password for all: "cropview"):
- admin@cropview.local (admin)
- expert@cropview.local (expert)
- farmer@cropview.local (farmer)
"""

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from cropview.models import Identity
from cropview.services.backends.base import (
    BaseDocumentBackend,
    BaseIdentityBackend,
    Document,
)
from cropview.services.errors import AuthError, NotFoundError

logger = logging.getLogger(__name__)


class InMemoryIdentityBackend(BaseIdentityBackend):
    """Identity backend holding accounts in a dict keyed by email."""

    def __init__(self, accounts: Optional[dict[str, tuple[str, str]]] = None):
        """
        Initialize the backend.

        Args:
            accounts: email -> (password, uid)
        """
        super().__init__()
        self._accounts: dict[str, tuple[str, str]] = dict(accounts or {})
        self._identity: Optional[Identity] = None

    @property
    def provider_name(self) -> str:
        return "memory"

    def add_account(self, email: str, password: str, uid: str) -> None:
        self._accounts[email.lower()] = (password, uid)

    async def authenticate(self, email: str, password: str) -> Identity:
        account = self._accounts.get(email.strip().lower())
        if account is None or account[0] != password:
            raise AuthError("Invalid email or password.", code="INVALID_LOGIN_CREDENTIALS")

        self._identity = Identity(uid=account[1], email=email.strip())
        await self._emit(self._identity)
        return self._identity

    async def deauthenticate(self) -> None:
        self._identity = None
        await self._emit(None)

    def current_identity(self) -> Optional[Identity]:
        return self._identity

    async def expire(self) -> None:
        """Simulates a session expiry pushed by the backend."""
        if self._identity is not None:
            self._identity = None
            await self._emit(None)


class InMemoryDocumentBackend(BaseDocumentBackend):
    """
    Document backend storing collections as nested dicts.

    Reads and writes copy field dicts so callers never share state
    with the store.
    """

    def __init__(self, collections: Optional[dict[str, dict[str, dict[str, Any]]]] = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = copy.deepcopy(collections or {})

    @property
    def provider_name(self) -> str:
        return "memory"

    def seed(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(fields)

    async def read_collection(self, name: str) -> list[Document]:
        docs = self._collections.get(name, {})
        return [Document(id=doc_id, fields=copy.deepcopy(fields)) for doc_id, fields in docs.items()]

    async def read_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        fields = self._collections.get(collection, {}).get(doc_id)
        if fields is None:
            raise NotFoundError(f"{collection}/{doc_id} not found")
        return copy.deepcopy(fields)

    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
    ) -> None:
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise NotFoundError(f"{collection}/{doc_id} not found")
        document.update(copy.deepcopy(fields))
        logger.debug(f"Updated {collection}/{doc_id}: {sorted(fields)}")


DEMO_PASSWORD = "cropview"

DEMO_USERS: dict[str, dict[str, Any]] = {
    "uid-admin": {"email": "admin@cropview.local", "name": "Asha Admin", "role": "admin"},
    "uid-expert": {"email": "expert@cropview.local", "name": "Elif Expert", "role": "expert"},
    "uid-farmer": {"email": "farmer@cropview.local", "name": "Femi Farmer", "role": "farmer"},
    "uid-farmer-2": {"email": "grower@cropview.local", "name": "Gita Grower", "role": "farmer"},
    "uid-farmer-3": {"email": "newcomer@cropview.local"},
}

_DEMO_PREDICTIONS = [
    # (user, crop, confidence, result, days ago, comment)
    ("uid-farmer", "wheat", 0.91, "Leaf rust", 3, ""),
    ("uid-farmer", "wheat", 0.78, "Healthy", 20, "Looks fine, re-check after rain."),
    ("uid-farmer", "corn", 0.66, "Northern leaf blight", 45, ""),
    ("uid-farmer-2", "rice", 0.88, "Brown spot", 70, "Apply fungicide within a week."),
    ("uid-farmer-2", "tomato", 0.54, "Early blight", 100, ""),
    ("uid-farmer-2", "corn", 0.97, "Healthy", 130, ""),
    ("uid-farmer", "potato", 0.72, "Late blight", 160, "Confirmed from photo."),
    ("uid-farmer-2", "wheat", 0.83, "Powdery mildew", 400, ""),
]


def build_demo_backends(
    now: Optional[datetime] = None,
    users_collection: str = "users",
    predictions_collection: str = "user_prediction",
) -> tuple[InMemoryIdentityBackend, InMemoryDocumentBackend]:
    """Creates in-memory backends seeded with demo accounts and predictions."""
    now = now or datetime.now(timezone.utc)

    identity = InMemoryIdentityBackend()
    documents = InMemoryDocumentBackend()

    for offset, (uid, fields) in enumerate(DEMO_USERS.items()):
        identity.add_account(fields["email"], DEMO_PASSWORD, uid)
        documents.seed(users_collection, uid, {**fields, "created_at": now - timedelta(days=365 - offset)})

    for index, (uid, crop, confidence, result, days_ago, comment) in enumerate(_DEMO_PREDICTIONS, start=1):
        fields: dict[str, Any] = {
            "user_id": uid,
            "crop_type": crop,
            "confidence": confidence,
            "result": result,
            "timestamp": now - timedelta(days=days_ago),
        }
        if comment:
            fields["expert_comment"] = comment
        documents.seed(predictions_collection, f"pred-{index:03d}", fields)

    return identity, documents
