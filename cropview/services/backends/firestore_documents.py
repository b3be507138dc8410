"""
Cloud Firestore document backend.

Wraps an async Firestore client and translates google.api_core errors into
the CropView error taxonomy. Reads are retried on transient failures;
writes are left to the caller, since the annotation workflow already
offers a retry.

Each UI session runs its own event loop, and an AsyncClient's gRPC channel
binds to the loop that first uses it. Clients are therefore created per
session and never shared.

The client authenticates with service-account credentials through the
Admin SDK, so Firestore security rules do not apply to its traffic.
"""

import logging
from typing import Any, Optional

from google.api_core import exceptions as gexc
from google.cloud import firestore
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from cropview.services.backends.base import BaseDocumentBackend, Document
from cropview.services.errors import (
    DataAccessError,
    NotFoundError,
    TransientError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)


_TRANSIENT_ERRORS = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.TooManyRequests,
    gexc.ResourceExhausted,
    gexc.Aborted,
    gexc.RetryError,
)


def translate_error(error: gexc.GoogleAPIError, target: str) -> DataAccessError:
    """Maps a google.api_core error to a DataAccessError subclass."""
    if isinstance(error, gexc.NotFound):
        return NotFoundError(f"{target} not found")
    if isinstance(error, (gexc.PermissionDenied, gexc.Unauthenticated)):
        return UnauthorizedError(f"Access to {target} was rejected by the backend")
    if isinstance(error, _TRANSIENT_ERRORS):
        return TransientError(f"Backend unavailable while accessing {target}")
    return DataAccessError(f"Backend error while accessing {target}: {error}")


def _unexpected_error(error: Exception, target: str) -> DataAccessError:
    # e.g. RuntimeError from a client used outside the event loop it is bound to
    logger.exception(f"Unexpected Firestore client error while accessing {target}")
    return DataAccessError(f"Backend error while accessing {target}: {error}")


def get_firebase_app(project_id: str, credentials_info: Optional[dict[str, Any]] = None):
    """Returns the default Firebase app, initializing it on first use."""
    import firebase_admin
    from firebase_admin import credentials

    try:
        return firebase_admin.get_app()
    except ValueError:
        cred = (
            credentials.Certificate(credentials_info)
            if credentials_info
            else credentials.ApplicationDefault()
        )
        app = firebase_admin.initialize_app(cred, {"projectId": project_id})
        logger.info(f"Initialized Firebase app for project {project_id}")
        return app


def create_firestore_client(
    project_id: str,
    credentials_info: Optional[dict[str, Any]] = None,
    app=None,
) -> firestore.AsyncClient:
    """
    Creates a new async Firestore client for one UI session.

    firebase_admin.firestore_async.client() caches one client per app,
    which would share a gRPC channel across event loops. Only the app's
    credentials are shared here.

    Args:
        project_id: Firebase project id
        credentials_info: Service-account dict, or None for Application Default Credentials
        app: Firebase app to take credentials from (default app when None)

    Returns:
        google.cloud.firestore.AsyncClient
    """
    app = app or get_firebase_app(project_id, credentials_info)
    return firestore.AsyncClient(
        project=project_id,
        credentials=app.credential.get_credential(),
    )


class FirestoreDocumentBackend(BaseDocumentBackend):
    """Document backend over google.cloud.firestore.AsyncClient."""

    def __init__(self, client):
        self._client = client

    @property
    def provider_name(self) -> str:
        return "firestore"

    @retry(
        retry=retry_if_exception_type(TransientError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def read_collection(self, name: str) -> list[Document]:
        try:
            return [
                Document(id=snapshot.id, fields=snapshot.to_dict() or {})
                async for snapshot in self._client.collection(name).stream()
            ]
        except gexc.GoogleAPIError as e:
            logger.warning(f"Failed to read collection {name}: {e}")
            raise translate_error(e, name) from e
        except Exception as e:
            raise _unexpected_error(e, name) from e

    @retry(
        retry=retry_if_exception_type(TransientError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def read_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        target = f"{collection}/{doc_id}"
        try:
            snapshot = await self._client.collection(collection).document(doc_id).get()
        except gexc.GoogleAPIError as e:
            logger.warning(f"Failed to read {target}: {e}")
            raise translate_error(e, target) from e
        except Exception as e:
            raise _unexpected_error(e, target) from e

        if not snapshot.exists:
            raise NotFoundError(f"{target} not found")
        return snapshot.to_dict() or {}

    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
    ) -> None:
        target = f"{collection}/{doc_id}"
        try:
            # update() fails with NotFound on a missing document and leaves other fields alone
            await self._client.collection(collection).document(doc_id).update(fields)
        except gexc.GoogleAPIError as e:
            logger.warning(f"Failed to update {target}: {e}")
            raise translate_error(e, target) from e
        except Exception as e:
            raise _unexpected_error(e, target) from e
