"""
Annotation Workflow - expert review of a single prediction.

State machine:
    CLOSED --select--> VIEWING --edit--> EDITING --save--> SAVING --ok--> CLOSED
                                            ^                 |
                                            +----- failure ---+
    cancel: any state -> CLOSED

A whitespace-only draft never reaches the backend. A successful save
mutates the selected record in place, so its status reads "Reviewed" on
the next render without a refetch.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from cropview.models import PredictionRecord
from cropview.services.errors import (
    DataAccessError,
    InvalidTransitionError,
    ValidationError,
)
from cropview.services.repository import RecordRepository

logger = logging.getLogger(__name__)


class AnnotationState(str, Enum):
    CLOSED = "closed"
    VIEWING = "viewing"
    EDITING = "editing"
    SAVING = "saving"


SavedCallback = Callable[[PredictionRecord], None]


class AnnotationWorkflow:
    """Drives the comment dialog for one reviewer."""

    def __init__(self, repository: RecordRepository, on_saved: Optional[SavedCallback] = None):
        self.repository = repository
        self.on_saved = on_saved
        self.state = AnnotationState.CLOSED
        self.selected: Optional[PredictionRecord] = None
        self.draft = ""
        self.error: Optional[str] = None

    def _require(self, *states: AnnotationState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransitionError(
                f"Cannot do this while {self.state.value} (expected {allowed})"
            )

    def select(self, prediction: PredictionRecord) -> None:
        """Opens the dialog on a prediction; the draft starts from its existing comment."""
        self._require(AnnotationState.CLOSED)
        self.selected = prediction
        self.draft = prediction.expert_comment
        self.error = None
        self.state = AnnotationState.VIEWING

    def edit(self, text: str) -> None:
        self._require(AnnotationState.VIEWING, AnnotationState.EDITING)
        self.draft = text
        self.state = AnnotationState.EDITING

    async def save(self) -> bool:
        """
        Writes the draft as the prediction's expert comment.

        Returns:
            True when saved (dialog closed), False when the draft was
            rejected or the write failed (dialog stays in EDITING with
            the draft kept and ``error`` set)

        Raises:
            InvalidTransitionError: If nothing is being edited or a save is in flight
        """
        self._require(AnnotationState.VIEWING, AnnotationState.EDITING)
        prediction = self.selected

        if not self.draft.strip():
            self.error = "Please enter a comment."
            self.state = AnnotationState.EDITING
            return False

        self.state = AnnotationState.SAVING
        self.error = None
        try:
            comment = await self.repository.set_expert_comment(prediction.id, self.draft)
        except (ValidationError, DataAccessError) as e:
            logger.warning(f"Saving comment for prediction {prediction.id} failed: {e}")
            # Cancelled while the write was in flight
            if self.state != AnnotationState.SAVING:
                return False
            self.error = str(e) or "Failed to save comment."
            self.state = AnnotationState.EDITING
            return False

        prediction.expert_comment = comment
        if self.on_saved is not None:
            self.on_saved(prediction)

        self._reset()
        return True

    def cancel(self) -> None:
        """Closes the dialog from any state, discarding the draft."""
        self._reset()

    def _reset(self) -> None:
        self.state = AnnotationState.CLOSED
        self.selected = None
        self.draft = ""
        self.error = None

    @property
    def is_open(self) -> bool:
        return self.state != AnnotationState.CLOSED
