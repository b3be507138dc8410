"""
Aggregation Engine - derives view-models from a record snapshot.

Every function here is pure and deterministic: same multiset of records
in, same output out, whatever order the backend returned them in.
Distributions list categories in first-seen order over the records'
canonical chronological order (timestamp/created_at, then id). The monthly
trend is ordered chronologically by year*12+month.

Nothing here touches the backend or the UI, so the same functions serve
the Streamlit pages, tests, or a batch job.
"""

import calendar
from datetime import datetime, timezone
from typing import Iterable, Optional

from cropview.models import (
    DEFAULT_ROLE,
    UNKNOWN_CROP,
    PredictionRecord,
    RecordSnapshot,
    Role,
    UserRecord,
)
from cropview.schemas import (
    AdminDashboardView,
    CategoryCount,
    ExpertDashboardView,
    ExpertPredictionsView,
    PredictionRow,
    PredictionsPageView,
    ReviewSplit,
    TrendBucket,
    UsersPageView,
)

UNKNOWN_CROP_BUCKET = "unknown"
UNKNOWN_USER_EMAIL = "Unknown User"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ============ Canonical ordering ============

def _chronological_predictions(predictions: Iterable[PredictionRecord]) -> list[PredictionRecord]:
    return sorted(predictions, key=lambda p: (p.timestamp, p.id))


def _chronological_users(users: Iterable[UserRecord]) -> list[UserRecord]:
    return sorted(users, key=lambda u: (u.created_at or _EPOCH, u.id))


def _count_first_seen(labels: Iterable[str]) -> list[CategoryCount]:
    counts: dict[str, int] = {}
    for label in labels:
        counts[label] = counts.get(label, 0) + 1
    return [CategoryCount(name=name, value=value) for name, value in counts.items()]


def count_for(distribution: list[CategoryCount], name: str) -> int:
    """Returns the count for one category (0 if absent)."""
    return next((c.value for c in distribution if c.name == name), 0)


# ============ Distributions ============

def role_distribution(users: Iterable[UserRecord]) -> list[CategoryCount]:
    """Counts users per role. Missing roles count as farmer."""
    return _count_first_seen(u.role or DEFAULT_ROLE for u in _chronological_users(users))


def _crop_label(crop_type: str) -> str:
    if not crop_type or crop_type == UNKNOWN_CROP:
        return UNKNOWN_CROP_BUCKET
    return crop_type


def crop_distribution(predictions: Iterable[PredictionRecord]) -> list[CategoryCount]:
    """Counts predictions per crop type. Missing crops are counted as "unknown"."""
    return _count_first_seen(
        _crop_label(p.crop_type)
        for p in _chronological_predictions(predictions)
    )


def review_split(predictions: Iterable[PredictionRecord]) -> ReviewSplit:
    """Splits predictions into reviewed (non-empty expert_comment) and pending."""
    predictions = list(predictions)
    reviewed = sum(1 for p in predictions if p.is_reviewed)
    return ReviewSplit(reviewed=reviewed, pending=len(predictions) - reviewed)


# ============ Monthly trend ============

def subtract_months(moment: datetime, months: int) -> datetime:
    """
    Steps back whole calendar months, keeping day and time.

    The day is clamped to the target month's length (Aug 31 - 6 months is Feb 28/29).
    """
    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def monthly_trend(
    predictions: Iterable[PredictionRecord],
    now: datetime,
    months: int = 6,
) -> list[TrendBucket]:
    """
    Buckets recent predictions by calendar month.

    Args:
        predictions: Prediction records
        now: Reference time (aware; naive is taken as UTC)
        months: Window size in calendar months

    Returns:
        Non-empty buckets in ascending year*12+month order
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    cutoff = subtract_months(now, months)

    counts: dict[tuple[int, int], int] = {}
    for prediction in predictions:
        if prediction.timestamp >= cutoff:
            stamp = prediction.timestamp.astimezone(timezone.utc)
            key = (stamp.year, stamp.month)
            counts[key] = counts.get(key, 0) + 1

    return [
        TrendBucket(month=month, year=year, count=count)
        for (year, month), count in sorted(counts.items(), key=lambda item: item[0][0] * 12 + item[0][1])
    ]


# ============ Per-user counts ============

def prediction_counts(
    users: Iterable[UserRecord],
    predictions: Iterable[PredictionRecord],
) -> dict[str, int]:
    """
    Counts predictions per user.

    Every user appears, with 0 when they have no predictions. Predictions
    owned by ids outside the user list are ignored.
    """
    counts = {user.id: 0 for user in users}
    for prediction in predictions:
        if prediction.user_id in counts:
            counts[prediction.user_id] += 1
    return counts


def annotate_prediction_counts(
    users: Iterable[UserRecord],
    predictions: Iterable[PredictionRecord],
) -> list[UserRecord]:
    """Returns copies of the users with prediction_count filled in."""
    users = list(users)
    counts = prediction_counts(users, predictions)
    return [user.model_copy(update={"prediction_count": counts[user.id]}) for user in users]


# ============ Rows, ordering and search ============

def newest_first(predictions: Iterable[PredictionRecord]) -> list[PredictionRecord]:
    return sorted(predictions, key=lambda p: (p.timestamp, p.id), reverse=True)


def attach_user_emails(
    predictions: Iterable[PredictionRecord],
    users: Iterable[UserRecord],
) -> list[PredictionRow]:
    """Joins predictions with their owners' emails, newest first."""
    emails = {user.id: user.email for user in users}
    return [
        PredictionRow(prediction=p, user_email=emails.get(p.user_id, UNKNOWN_USER_EMAIL))
        for p in newest_first(predictions)
    ]


def search_users(users: Iterable[UserRecord], term: Optional[str]) -> list[UserRecord]:
    """Filters users by email, name or role (case-insensitive). Blank term keeps all."""
    users = list(users)
    needle = (term or "").strip().lower()
    if not needle:
        return users
    return [
        u for u in users
        if needle in u.email.lower()
        or (u.name is not None and needle in u.name.lower())
        or needle in u.role.lower()
    ]


def search_predictions(rows: Iterable[PredictionRow], term: Optional[str]) -> list[PredictionRow]:
    """Filters prediction rows by owner email, crop type or result."""
    rows = list(rows)
    needle = (term or "").strip().lower()
    if not needle:
        return rows
    return [
        r for r in rows
        if needle in r.user_email.lower()
        or needle in r.prediction.crop_type.lower()
        or needle in r.prediction.result.lower()
    ]


# ============ Page view-models ============

def build_admin_dashboard(snapshot: RecordSnapshot) -> AdminDashboardView:
    roles = role_distribution(snapshot.users)
    return AdminDashboardView(
        total_users=len(snapshot.users),
        role_distribution=roles,
        admin_count=count_for(roles, Role.ADMIN.value),
        expert_count=count_for(roles, Role.EXPERT.value),
        farmer_count=count_for(roles, Role.FARMER.value),
        total_predictions=len(snapshot.predictions),
        crop_distribution=crop_distribution(snapshot.predictions),
    )


def build_users_page(snapshot: RecordSnapshot, search: Optional[str] = None) -> UsersPageView:
    users = annotate_prediction_counts(snapshot.users, snapshot.predictions)
    return UsersPageView(users=search_users(users, search), total=len(users))


def build_predictions_page(
    snapshot: RecordSnapshot,
    now: datetime,
    search: Optional[str] = None,
    months: int = 6,
) -> PredictionsPageView:
    rows = attach_user_emails(snapshot.predictions, snapshot.users)
    return PredictionsPageView(
        rows=search_predictions(rows, search),
        trend=monthly_trend(snapshot.predictions, now, months),
        total=len(rows),
    )


def build_expert_dashboard(snapshot: RecordSnapshot, recent_limit: int = 5) -> ExpertDashboardView:
    rows = attach_user_emails(snapshot.predictions, snapshot.users)
    return ExpertDashboardView(
        total_predictions=len(snapshot.predictions),
        review=review_split(snapshot.predictions),
        crop_distribution=crop_distribution(snapshot.predictions),
        recent=rows[:max(recent_limit, 0)],
    )


def build_expert_predictions(
    snapshot: RecordSnapshot,
    search: Optional[str] = None,
) -> ExpertPredictionsView:
    rows = attach_user_emails(snapshot.predictions, snapshot.users)
    return ExpertPredictionsView(rows=search_predictions(rows, search), total=len(rows))
