"""
Backend abstraction layer.

Supports two providers:
- Firebase (Authentication REST API + Cloud Firestore)
- Memory (local development and tests)
"""

from cropview.services.backends.base import (
    BaseDocumentBackend,
    BaseIdentityBackend,
    Document,
)
from cropview.services.backends.factory import Backends, BackendProviderType, create_backends

__all__ = [
    "BaseDocumentBackend",
    "BaseIdentityBackend",
    "Document",
    "Backends",
    "BackendProviderType",
    "create_backends",
]
