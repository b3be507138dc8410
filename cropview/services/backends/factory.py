"""
Backend Factory.

Creates the identity and document backends based on configuration.
Supports switching between providers via the BACKEND_PROVIDER env var.

Backends are created per UI session and owned by the caller; nothing
here is cached at module level.
"""

import logging
from enum import Enum
from typing import NamedTuple, Optional

from cropview.services.backends.base import BaseDocumentBackend, BaseIdentityBackend
from cropview.services.secret_manager import Settings, get_settings

logger = logging.getLogger(__name__)


class BackendProviderType(str, Enum):
    """Supported backend providers."""
    FIREBASE = "firebase"
    MEMORY = "memory"


class Backends(NamedTuple):
    identity: BaseIdentityBackend
    documents: BaseDocumentBackend


def create_firebase_backends(settings: Settings) -> Backends:
    """Creates Firebase Authentication + Firestore backends."""
    from cropview.services.backends.firebase_identity import FirebaseIdentityBackend
    from cropview.services.backends.firestore_documents import (
        FirestoreDocumentBackend,
        create_firestore_client,
    )
    from cropview.services.secret_manager import (
        get_firebase_api_key,
        get_firebase_credentials_info,
    )

    identity = FirebaseIdentityBackend(
        api_key=get_firebase_api_key(),
        base_url=settings.identity_toolkit_url,
        token_url=settings.secure_token_url,
        timeout=settings.request_timeout,
    )
    client = create_firestore_client(
        project_id=settings.firebase_project_id,
        credentials_info=get_firebase_credentials_info(),
    )
    return Backends(identity=identity, documents=FirestoreDocumentBackend(client))


def create_memory_backends(settings: Settings) -> Backends:
    """Creates in-memory backends seeded with demo data."""
    from cropview.services.backends.memory import build_demo_backends

    identity, documents = build_demo_backends(
        users_collection=settings.users_collection,
        predictions_collection=settings.predictions_collection,
    )
    return Backends(identity=identity, documents=documents)


_BACKEND_FACTORIES = {
    BackendProviderType.FIREBASE: create_firebase_backends,
    BackendProviderType.MEMORY: create_memory_backends,
}


def create_backends(settings: Optional[Settings] = None) -> Backends:
    """
    Returns freshly created backends for the configured provider.

    Args:
        settings: Optional settings; defaults to the cached environment settings

    Returns:
        Backends(identity, documents)

    Raises:
        ValueError: If BACKEND_PROVIDER is not a supported provider
    """
    settings = settings or get_settings()
    provider_type = settings.backend_provider

    try:
        provider_enum = BackendProviderType(provider_type.lower())
    except ValueError:
        valid = [p.value for p in BackendProviderType]
        raise ValueError(
            f"Invalid BACKEND_PROVIDER: '{provider_type}'. "
            f"Valid options: {valid}"
        )

    logger.info(f"Initializing backends: {provider_enum.value}")
    return _BACKEND_FACTORIES[provider_enum](settings)
