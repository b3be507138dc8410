from datetime import datetime, timezone

import pytest

from cropview.services.backends.memory import (
    InMemoryDocumentBackend,
    InMemoryIdentityBackend,
    build_demo_backends,
)
from cropview.services.errors import TransientError
from cropview.services.repository import RecordRepository
from cropview.services.session_store import SessionStore

NOW = datetime(2024, 8, 15, 12, 0, tzinfo=timezone.utc)


class FlakyDocumentBackend(InMemoryDocumentBackend):
    """In-memory backend whose reads/writes can be made to fail on demand."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_reads = False
        self.fail_writes = False
        self.writes = []

    async def read_collection(self, name):
        if self.fail_reads:
            raise TransientError("backend unavailable")
        return await super().read_collection(name)

    async def read_document(self, collection, doc_id):
        if self.fail_reads:
            raise TransientError("backend unavailable")
        return await super().read_document(collection, doc_id)

    async def update_fields(self, collection, doc_id, fields):
        if self.fail_writes:
            raise TransientError("backend unavailable")
        self.writes.append((collection, doc_id, dict(fields)))
        await super().update_fields(collection, doc_id, fields)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def identity_backend():
    backend = InMemoryIdentityBackend()
    backend.add_account("admin@example.com", "secret", "u-admin")
    backend.add_account("expert@example.com", "secret", "u-expert")
    backend.add_account("farmer@example.com", "secret", "u-farmer")
    backend.add_account("ghost@example.com", "secret", "u-ghost")
    return backend


@pytest.fixture
def documents():
    backend = FlakyDocumentBackend()
    backend.seed("users", "u-admin", {"email": "admin@example.com", "name": "Ada", "role": "admin"})
    backend.seed("users", "u-expert", {"email": "expert@example.com", "name": "Eve", "role": "expert"})
    backend.seed("users", "u-farmer", {"email": "farmer@example.com", "name": "Fay", "role": "farmer"})
    backend.seed("user_prediction", "p1", {
        "user_id": "u-farmer",
        "crop_type": "wheat",
        "confidence": 0.9,
        "result": "Leaf rust",
        "timestamp": datetime(2024, 8, 1, tzinfo=timezone.utc),
    })
    backend.seed("user_prediction", "p2", {
        "user_id": "u-farmer",
        "crop_type": "corn",
        "confidence": 0.7,
        "result": "Healthy",
        "timestamp": datetime(2024, 7, 1, tzinfo=timezone.utc),
        "expert_comment": "Looks good",
    })
    return backend


@pytest.fixture
def repository(documents, now):
    return RecordRepository(documents, clock=lambda: now)


@pytest.fixture
def store(identity_backend, repository):
    session_store = SessionStore(identity_backend, repository)
    yield session_store
    session_store.teardown()


@pytest.fixture
def demo_backends(now):
    return build_demo_backends(now=now)
