"""
Record Repository - Data Access Layer.

Read/write access to the two logical collections:
- users (User Records, read-only here)
- user_prediction (Prediction Records, expert_comment is writable)

Reads return full snapshots with no paging. Domain volume is assumed
small; this is a known scaling limit.

Defaulting of loosely-typed documents happens here, once, through the
record models' from_document constructors.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from cropview.models import (
    DEFAULT_ROLE,
    Identity,
    PredictionRecord,
    RecordSnapshot,
    Role,
    UserRecord,
    normalize_role,
)
from cropview.services.aggregation import annotate_prediction_counts
from cropview.services.backends.base import BaseDocumentBackend
from cropview.services.errors import NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordRepository:
    """
    Repository over the document backend.

    When bound to a reviewer identity, every comment write first re-reads
    that reviewer's role from the store, so a role revoked mid-session
    stops further writes.
    """

    def __init__(
        self,
        documents: BaseDocumentBackend,
        users_collection: str = "users",
        predictions_collection: str = "user_prediction",
        reviewer: Optional[Identity] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize RecordRepository.

        Args:
            documents: Document backend
            users_collection: Name of the users collection
            predictions_collection: Name of the predictions collection
            reviewer: Identity whose role is re-checked before each write. If None, no check.
            clock: Source of "now" for predictions without a timestamp
        """
        self.documents = documents
        self.users_collection = users_collection
        self.predictions_collection = predictions_collection
        self.reviewer = reviewer
        self._clock = clock

    async def list_users(self) -> list[UserRecord]:
        """Returns every user record (prediction counts left at 0)."""
        docs = await self.documents.read_collection(self.users_collection)
        return [UserRecord.from_document(doc.id, doc.fields) for doc in docs]

    async def list_predictions(self) -> list[PredictionRecord]:
        """Returns every prediction record."""
        fetched_at = self._clock()
        docs = await self.documents.read_collection(self.predictions_collection)
        return [
            PredictionRecord.from_document(doc.id, doc.fields, fetched_at)
            for doc in docs
        ]

    async def fetch_snapshot(self) -> RecordSnapshot:
        """
        Fetches users and predictions concurrently and joins them.

        Per-user prediction counts need both collections, so nothing is
        derived until both reads have resolved.

        Returns:
            RecordSnapshot with users annotated with their prediction counts
        """
        users, predictions = await asyncio.gather(
            self.list_users(),
            self.list_predictions(),
        )

        logger.info(f"Fetched snapshot: {len(users)} users, {len(predictions)} predictions")
        return RecordSnapshot(
            users=annotate_prediction_counts(users, predictions),
            predictions=predictions,
            fetched_at=self._clock(),
        )

    async def get_role(self, uid: str) -> str:
        """
        Reads the stored role for a subject id.

        Returns:
            Stored role string, or the default role when the field is absent

        Raises:
            NotFoundError: If the user has no document
        """
        fields = await self.documents.read_document(self.users_collection, uid)
        return normalize_role(fields.get("role"))

    async def set_expert_comment(self, prediction_id: str, text: str) -> str:
        """
        Attaches an expert comment to a prediction.

        Partial update: only expert_comment is written, other fields are
        untouched. Concurrent reviewers get last-write-wins.

        Args:
            prediction_id: Prediction document id
            text: Comment text (trimmed before writing)

        Returns:
            The trimmed comment as stored

        Raises:
            ValidationError: If the trimmed text is empty
            NotFoundError: If the prediction does not exist
            UnauthorizedError: If the reviewer is no longer an expert or the backend refuses
            TransientError: On network failure (safe to retry)
        """
        comment = (text or "").strip()
        if not comment:
            raise ValidationError("Please enter a comment.")

        await self._check_reviewer()

        await self.documents.update_fields(
            self.predictions_collection,
            prediction_id,
            {"expert_comment": comment},
        )

        logger.info(
            f"Expert comment saved for prediction {prediction_id} "
            f"by {self.reviewer.uid if self.reviewer else 'unbound reviewer'}"
        )
        return comment

    async def _check_reviewer(self) -> None:
        if self.reviewer is None:
            return

        try:
            role = await self.get_role(self.reviewer.uid)
        except NotFoundError:
            role = DEFAULT_ROLE

        if role != Role.EXPERT.value:
            logger.warning(
                f"Comment write refused for uid={self.reviewer.uid} (role '{role}')"
            )
            raise UnauthorizedError("Only experts can add comments.")
