"""
View-model schemas handed to the presentation layer.

These are separate from the record models to keep render contracts clean.
Every instance is derived from a RecordSnapshot and lives for one render.
"""

from pydantic import BaseModel, Field

from cropview.models import PredictionRecord, UserRecord


# ============ Building blocks ============

class CategoryCount(BaseModel):
    """One slice of a distribution chart."""
    name: str
    value: int = Field(..., ge=0)


class TrendBucket(BaseModel):
    """Prediction count for one calendar month."""
    month: int = Field(..., ge=1, le=12)
    year: int
    count: int = Field(..., ge=0)

    @property
    def key(self) -> int:
        """Chronological sort key."""
        return self.year * 12 + self.month

    @property
    def label(self) -> str:
        return f"{self.month}/{self.year}"


class ReviewSplit(BaseModel):
    """Reviewed vs pending predictions."""
    reviewed: int = Field(default=0, ge=0)
    pending: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.reviewed + self.pending

    def as_categories(self) -> list[CategoryCount]:
        return [
            CategoryCount(name="Reviewed", value=self.reviewed),
            CategoryCount(name="Pending", value=self.pending),
        ]


class PredictionRow(BaseModel):
    """A prediction joined with its owner's email for table display."""
    prediction: PredictionRecord
    user_email: str

    @property
    def review_status(self) -> str:
        return self.prediction.review_status


# ============ Admin pages ============

class AdminDashboardView(BaseModel):
    """Admin overview: user roles and prediction crop types."""
    total_users: int = 0
    role_distribution: list[CategoryCount] = Field(default_factory=list)
    admin_count: int = 0
    expert_count: int = 0
    farmer_count: int = 0
    total_predictions: int = 0
    crop_distribution: list[CategoryCount] = Field(default_factory=list)


class UsersPageView(BaseModel):
    """User table with per-user prediction counts."""
    users: list[UserRecord] = Field(default_factory=list)
    total: int = 0


class PredictionsPageView(BaseModel):
    """All predictions, newest first, plus the monthly trend."""
    rows: list[PredictionRow] = Field(default_factory=list)
    trend: list[TrendBucket] = Field(default_factory=list)
    total: int = 0


# ============ Expert pages ============

class ExpertDashboardView(BaseModel):
    """Expert overview: review progress and recent predictions."""
    total_predictions: int = 0
    review: ReviewSplit = Field(default_factory=ReviewSplit)
    crop_distribution: list[CategoryCount] = Field(default_factory=list)
    recent: list[PredictionRow] = Field(default_factory=list)


class ExpertPredictionsView(BaseModel):
    """Predictions available for annotation, newest first."""
    rows: list[PredictionRow] = Field(default_factory=list)
    total: int = 0
