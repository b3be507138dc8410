import random
from datetime import datetime, timedelta, timezone

import pytest

from cropview.models import PredictionRecord, RecordSnapshot, UserRecord
from cropview.services import aggregation

NOW = datetime(2024, 8, 15, 12, 0, tzinfo=timezone.utc)


def make_prediction(pid, crop="wheat", days_ago=0, user_id="u1", comment="", result="Healthy"):
    return PredictionRecord(
        id=pid,
        user_id=user_id,
        crop_type=crop,
        result=result,
        timestamp=NOW - timedelta(days=days_ago),
        expert_comment=comment,
    )


def make_user(uid, role="farmer", email=None, name=None, days_ago=0):
    return UserRecord(
        id=uid,
        role=role,
        email=email or f"{uid}@example.com",
        name=name,
        created_at=NOW - timedelta(days=days_ago),
    )


@pytest.fixture
def users():
    return [
        make_user("u1", "farmer", name="Fay", days_ago=30),
        make_user("u2", "expert", name="Eve", days_ago=20),
        make_user("u3", "admin", days_ago=10),
        make_user("u4", "farmer", days_ago=5),
        make_user("u5", "superuser", days_ago=1),
    ]


@pytest.fixture
def predictions():
    return [
        make_prediction("p1", "wheat", 200, "u1"),
        make_prediction("p2", "corn", 120, "u1", comment="ok"),
        make_prediction("p3", "wheat", 60, "u4"),
        make_prediction("p4", "rice", 40, "u4", comment="  "),
        make_prediction("p5", "", 10, "u1", comment="Spray now"),
        make_prediction("p6", "corn", 2, "ghost"),
    ]


# ============ Scenarios ============

def test_crop_distribution_first_seen_order():
    predictions = [
        make_prediction("a", "wheat", days_ago=3),
        make_prediction("b", "wheat", days_ago=2),
        make_prediction("c", "corn", days_ago=1),
    ]
    result = aggregation.crop_distribution(predictions)
    assert [(c.name, c.value) for c in result] == [("wheat", 2), ("corn", 1)]


def test_crop_distribution_missing_crop_is_unknown(predictions):
    names = {c.name: c.value for c in aggregation.crop_distribution(predictions)}
    assert names["unknown"] == 1


def test_role_distribution_keeps_unknown_roles(users):
    counts = {c.name: c.value for c in aggregation.role_distribution(users)}
    assert counts == {"farmer": 2, "expert": 1, "admin": 1, "superuser": 1}


# ============ Properties ============

def test_distributions_sum_to_totals(users, predictions):
    assert sum(c.value for c in aggregation.role_distribution(users)) == len(users)
    assert sum(c.value for c in aggregation.crop_distribution(predictions)) == len(predictions)


@pytest.mark.parametrize("count", [0, 1, 7, 40])
def test_review_split_adds_up(count):
    rng = random.Random(count)
    predictions = [
        make_prediction(f"p{i}", comment=rng.choice(["", " ", "fine", "check"]))
        for i in range(count)
    ]
    split = aggregation.review_split(predictions)
    assert split.reviewed + split.pending == count
    assert split.total == count


def test_review_split_values(predictions):
    split = aggregation.review_split(predictions)
    assert (split.reviewed, split.pending) == (2, 4)


def test_output_does_not_depend_on_input_order(users, predictions):
    snapshot = RecordSnapshot(users=users, predictions=predictions)
    shuffled_users, shuffled_predictions = list(users), list(predictions)
    random.Random(7).shuffle(shuffled_users)
    random.Random(7).shuffle(shuffled_predictions)
    shuffled = RecordSnapshot(users=shuffled_users, predictions=shuffled_predictions)

    assert aggregation.build_admin_dashboard(snapshot) == aggregation.build_admin_dashboard(shuffled)
    assert aggregation.build_predictions_page(snapshot, NOW) == aggregation.build_predictions_page(shuffled, NOW)
    assert aggregation.build_expert_dashboard(snapshot) == aggregation.build_expert_dashboard(shuffled)


def test_aggregation_is_idempotent(users, predictions):
    snapshot = RecordSnapshot(users=users, predictions=predictions)
    assert aggregation.build_admin_dashboard(snapshot) == aggregation.build_admin_dashboard(snapshot)
    assert aggregation.build_users_page(snapshot) == aggregation.build_users_page(snapshot)
    assert aggregation.build_expert_predictions(snapshot) == aggregation.build_expert_predictions(snapshot)


# ============ Monthly trend ============

def test_trend_is_chronological_and_windowed(predictions):
    trend = aggregation.monthly_trend(predictions, NOW)
    keys = [b.key for b in trend]
    assert keys == sorted(keys)
    # p1 (200 days ago) is outside the six-month window
    assert sum(b.count for b in trend) == len(predictions) - 1


def test_trend_buckets_by_month_across_year_boundary():
    now = datetime(2024, 2, 10, tzinfo=timezone.utc)
    predictions = [
        make_prediction("a", days_ago=0),
        PredictionRecord(id="b", timestamp=datetime(2023, 12, 31, 23, tzinfo=timezone.utc)),
        PredictionRecord(id="c", timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc)),
        PredictionRecord(id="d", timestamp=datetime(2023, 12, 5, tzinfo=timezone.utc)),
    ]
    trend = aggregation.monthly_trend(predictions, now)
    assert [(b.month, b.year, b.count) for b in trend] == [(12, 2023, 2), (1, 2024, 1), (8, 2024, 1)]
    assert trend[0].label == "12/2023"


def test_trend_cutoff_is_inclusive():
    now = datetime(2024, 8, 15, 12, 0, tzinfo=timezone.utc)
    edge = PredictionRecord(id="edge", timestamp=datetime(2024, 2, 15, 12, 0, tzinfo=timezone.utc))
    before = PredictionRecord(id="before", timestamp=datetime(2024, 2, 15, 11, 59, tzinfo=timezone.utc))
    trend = aggregation.monthly_trend([edge, before], now)
    assert [(b.month, b.count) for b in trend] == [(2, 1)]


@pytest.mark.parametrize("moment,months,expected", [
    (datetime(2024, 8, 31), 6, datetime(2024, 2, 29)),
    (datetime(2023, 8, 31), 6, datetime(2023, 2, 28)),
    (datetime(2024, 3, 15), 6, datetime(2023, 9, 15)),
    (datetime(2024, 1, 1), 12, datetime(2023, 1, 1)),
])
def test_subtract_months_clamps_day(moment, months, expected):
    assert aggregation.subtract_months(moment, months) == expected


def test_trend_of_nothing_is_empty():
    assert aggregation.monthly_trend([], NOW) == []


# ============ Per-user counts ============

def test_prediction_counts_include_zero_count_users(users, predictions):
    counts = aggregation.prediction_counts(users, predictions)
    assert counts == {"u1": 3, "u2": 0, "u3": 0, "u4": 2, "u5": 0}


def test_annotate_prediction_counts_returns_copies(users, predictions):
    annotated = aggregation.annotate_prediction_counts(users, predictions)
    assert [u.prediction_count for u in annotated] == [3, 0, 0, 2, 0]
    assert all(u.prediction_count == 0 for u in users)


# ============ Rows and search ============

def test_attach_user_emails_newest_first(users, predictions):
    rows = aggregation.attach_user_emails(predictions, users)
    assert [r.prediction.id for r in rows] == ["p6", "p5", "p4", "p3", "p2", "p1"]
    assert rows[0].user_email == "Unknown User"
    assert rows[1].user_email == "u1@example.com"


def test_search_users(users):
    assert [u.id for u in aggregation.search_users(users, "EVE")] == ["u2"]
    assert [u.id for u in aggregation.search_users(users, "admin")] == ["u3"]
    assert len(aggregation.search_users(users, "  ")) == len(users)
    assert aggregation.search_users(users, "nobody") == []


def test_search_predictions(users, predictions):
    rows = aggregation.attach_user_emails(predictions, users)
    assert {r.prediction.id for r in aggregation.search_predictions(rows, "Wheat")} == {"p1", "p3"}
    assert {r.prediction.id for r in aggregation.search_predictions(rows, "u4@")} == {"p3", "p4"}
    assert len(aggregation.search_predictions(rows, "healthy")) == len(rows)
    assert len(aggregation.search_predictions(rows, None)) == len(rows)


# ============ Page view-models ============

def test_admin_dashboard(users, predictions):
    view = aggregation.build_admin_dashboard(RecordSnapshot(users=users, predictions=predictions))
    assert view.total_users == 5
    assert (view.admin_count, view.expert_count, view.farmer_count) == (1, 1, 2)
    assert view.total_predictions == 6


def test_empty_snapshot_gives_zeroed_views():
    snapshot = RecordSnapshot.empty()
    admin = aggregation.build_admin_dashboard(snapshot)
    expert = aggregation.build_expert_dashboard(snapshot)
    assert admin.total_users == 0
    assert admin.role_distribution == []
    assert expert.review.total == 0
    assert expert.recent == []
    assert aggregation.build_predictions_page(snapshot, NOW).trend == []


def test_users_page_filters_but_reports_total(users, predictions):
    view = aggregation.build_users_page(RecordSnapshot(users=users, predictions=predictions), "farmer")
    assert view.total == 5
    assert {u.id: u.prediction_count for u in view.users} == {"u1": 3, "u4": 2}


def test_expert_dashboard_recent_limit(users, predictions):
    snapshot = RecordSnapshot(users=users, predictions=predictions)
    view = aggregation.build_expert_dashboard(snapshot, recent_limit=2)
    assert [r.prediction.id for r in view.recent] == ["p6", "p5"]
    assert view.total_predictions == 6


def test_expert_predictions_rows_carry_status(users, predictions):
    view = aggregation.build_expert_predictions(RecordSnapshot(users=users, predictions=predictions))
    statuses = {r.prediction.id: r.review_status for r in view.rows}
    assert statuses["p2"] == "Reviewed"
    assert statuses["p4"] == "Pending"
