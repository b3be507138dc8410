"""
Dashboard Service - Page Orchestration Layer.

Runs one fetch-and-aggregate cycle per page:
1. Fetches a snapshot through the Record Repository (users and
   predictions concurrently)
2. Caches it for the lifetime of the page
3. Hands out view-models built by the Aggregation Engine

Fetch failures never take the page down: the error is logged, surfaced
through ``last_error`` and the page renders zeroed view-models.

This separation keeps the Streamlit pages free of data access, and lets
the same service be driven from tests.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from cropview.models import PredictionRecord, RecordSnapshot
from cropview.schemas import (
    AdminDashboardView,
    ExpertDashboardView,
    ExpertPredictionsView,
    PredictionsPageView,
    UsersPageView,
)
from cropview.services import aggregation
from cropview.services.errors import DataAccessError
from cropview.services.repository import RecordRepository

logger = logging.getLogger(__name__)

FETCH_ERROR_MESSAGE = "Failed to load data. Please try again."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DashboardService:
    """
    Snapshot cache plus view-model builders for the dashboard pages.

    Once closed, results of fetches still in flight are discarded.
    """

    def __init__(
        self,
        repository: RecordRepository,
        trend_months: int = 6,
        recent_limit: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize DashboardService.

        Args:
            repository: Record repository (bound to the reviewer on expert pages)
            trend_months: Window of the monthly prediction trend
            recent_limit: Number of recent predictions on the expert overview
            clock: Source of "now" for the trend window
        """
        self.repository = repository
        self.trend_months = trend_months
        self.recent_limit = recent_limit
        self._clock = clock
        self.snapshot = RecordSnapshot.empty()
        self.last_error: Optional[str] = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def refresh(self) -> RecordSnapshot:
        """
        Fetches a fresh snapshot.

        Returns:
            The cached snapshot (empty after a failed first fetch)
        """
        try:
            snapshot = await self.repository.fetch_snapshot()
        except DataAccessError as e:
            logger.exception(f"Snapshot fetch failed: {e}")
            if not self._closed:
                self.last_error = FETCH_ERROR_MESSAGE
            return self.snapshot

        if self._closed:
            logger.info("Discarding snapshot for closed dashboard")
            return self.snapshot

        self.snapshot = snapshot
        self.last_error = None
        return snapshot

    def close(self) -> None:
        self._closed = True

    # ============ Admin pages ============

    def admin_dashboard(self) -> AdminDashboardView:
        return aggregation.build_admin_dashboard(self.snapshot)

    def users_page(self, search: Optional[str] = None) -> UsersPageView:
        return aggregation.build_users_page(self.snapshot, search)

    def predictions_page(self, search: Optional[str] = None) -> PredictionsPageView:
        return aggregation.build_predictions_page(
            self.snapshot,
            now=self._clock(),
            search=search,
            months=self.trend_months,
        )

    # ============ Expert pages ============

    def expert_dashboard(self) -> ExpertDashboardView:
        return aggregation.build_expert_dashboard(self.snapshot, self.recent_limit)

    def expert_predictions(self, search: Optional[str] = None) -> ExpertPredictionsView:
        return aggregation.build_expert_predictions(self.snapshot, search)

    def find_prediction(self, prediction_id: str) -> Optional[PredictionRecord]:
        return self.snapshot.find_prediction(prediction_id)

    def apply_comment(self, prediction_id: str, text: str) -> Optional[PredictionRecord]:
        """
        Reflects a saved comment in the cached snapshot.

        Returns:
            The updated record, or None if it is not in the snapshot
        """
        prediction = self.snapshot.find_prediction(prediction_id)
        if prediction is None:
            logger.warning(f"Saved comment for unknown prediction {prediction_id}")
            return None
        prediction.expert_comment = text
        return prediction
