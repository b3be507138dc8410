"""
Record models for CropView.

Uses Pydantic for validation. Field defaults for the loosely-typed
Firestore documents are stated once here and applied at the repository
boundary through the ``from_document`` constructors.

Collections:
- users: email, name, role, created_at
- user_prediction: user_id, crop_type, confidence, result, timestamp, expert_comment
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Access class of a user record."""
    ADMIN = "admin"
    EXPERT = "expert"
    FARMER = "farmer"


# Role lookups that fail or find nothing resolve to this, never to an elevated role
DEFAULT_ROLE = Role.FARMER.value

UNKNOWN_CROP = "Unknown"
NO_RESULT = "No result"
MISSING_EMAIL = "N/A"


class AuthState(str, Enum):
    """Authentication state of the current session."""
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


def normalize_role(value: Any) -> str:
    """Returns the stored role string, or the default role when absent."""
    if isinstance(value, Role):
        return value.value
    if isinstance(value, str) and value:
        return value
    return DEFAULT_ROLE


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Converts a Firestore/JSON timestamp value to an aware UTC datetime.

    Accepts datetimes (Firestore returns DatetimeWithNanoseconds), dates,
    ISO-8601 strings and epoch seconds. Naive values are taken as UTC.

    Returns:
        Aware datetime, or None if the value cannot be interpreted
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            result = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value:
        return value
    return default


class Identity(BaseModel):
    """
    An authenticated subject within the session lifetime.

    Created on successful sign-in and dropped on sign-out or expiry.
    Only the session store hands these out.
    """
    model_config = ConfigDict(frozen=True)

    uid: str
    email: Optional[str] = None
    state: AuthState = AuthState.AUTHENTICATED


class IdentityChanged(BaseModel):
    """Event emitted by the session store when the identity (or its role) changes."""
    model_config = ConfigDict(frozen=True)

    identity: Optional[Identity] = None
    role: Optional[str] = None


class UserRecord(BaseModel):
    """A document from the ``users`` collection. Read-only to this app."""
    id: str
    email: str = MISSING_EMAIL
    name: Optional[str] = None
    role: str = DEFAULT_ROLE
    created_at: Optional[datetime] = None
    prediction_count: int = Field(default=0, ge=0)

    @classmethod
    def from_document(cls, doc_id: str, fields: dict[str, Any]) -> "UserRecord":
        """Builds a record from raw document fields, applying defaults."""
        name = fields.get("name")
        return cls(
            id=doc_id,
            email=_text(fields.get("email"), MISSING_EMAIL),
            name=name if isinstance(name, str) and name else None,
            role=normalize_role(fields.get("role")),
            created_at=coerce_datetime(fields.get("created_at")),
        )

    @property
    def display_name(self) -> str:
        return self.name or MISSING_EMAIL


class PredictionRecord(BaseModel):
    """
    A document from the ``user_prediction`` collection.

    A non-empty ``expert_comment`` is the only "reviewed" signal; there is
    no separate status field. Writers must keep it that way.
    """
    id: str
    user_id: str = ""
    crop_type: str = UNKNOWN_CROP
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    result: str = NO_RESULT
    timestamp: datetime
    expert_comment: str = ""

    @classmethod
    def from_document(
        cls,
        doc_id: str,
        fields: dict[str, Any],
        fetched_at: datetime,
    ) -> "PredictionRecord":
        """
        Builds a record from raw document fields, applying defaults.

        Args:
            doc_id: Firestore document id
            fields: Raw document fields
            fetched_at: Fallback timestamp for documents without one

        Returns:
            Normalized PredictionRecord
        """
        comment = fields.get("expert_comment")
        return cls(
            id=doc_id,
            user_id=_text(fields.get("user_id"), ""),
            crop_type=_text(fields.get("crop_type"), UNKNOWN_CROP),
            confidence=_coerce_confidence(fields.get("confidence")),
            result=_text(fields.get("result"), NO_RESULT),
            timestamp=coerce_datetime(fields.get("timestamp")) or fetched_at,
            expert_comment=comment if isinstance(comment, str) else "",
        )

    @property
    def is_reviewed(self) -> bool:
        return bool(self.expert_comment.strip())

    @property
    def review_status(self) -> str:
        return "Reviewed" if self.is_reviewed else "Pending"


class RecordSnapshot(BaseModel):
    """
    Joined result of one fetch cycle.

    Users carry their derived prediction counts. View-models are pure
    functions of a snapshot and are never persisted.
    """
    users: list[UserRecord] = Field(default_factory=list)
    predictions: list[PredictionRecord] = Field(default_factory=list)
    fetched_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "RecordSnapshot":
        return cls()

    def find_prediction(self, prediction_id: str) -> Optional[PredictionRecord]:
        return next((p for p in self.predictions if p.id == prediction_id), None)


class DashboardPreferences(BaseModel):
    """Local admin dashboard settings. Kept in the UI session, not persisted."""
    new_user_notifications: bool = True
    prediction_notifications: bool = True
    email_notifications: bool = False
    show_analytics: bool = True
    detailed_user_info: bool = True
