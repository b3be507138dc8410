import json
from datetime import datetime, timezone

import pandas as pd

from cropview import charts
from cropview.models import PredictionRecord, UserRecord
from cropview.schemas import CategoryCount, PredictionRow, ReviewSplit, TrendBucket
from cropview.services import secret_manager
from cropview.services.secret_manager import Settings


# ============ Settings ============

def test_settings_defaults(monkeypatch):
    for name in ("ENV", "BACKEND_PROVIDER", "TREND_MONTHS", "USERS_COLLECTION"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(_env_file=None)
    assert settings.is_local
    assert settings.backend_provider == "memory"
    assert settings.users_collection == "users"
    assert settings.predictions_collection == "user_prediction"
    assert settings.trend_months == 6
    assert settings.recent_predictions_limit == 5


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("ENV", "cloud")
    monkeypatch.setenv("TREND_MONTHS", "12")
    settings = Settings(_env_file=None)
    assert not settings.is_local
    assert settings.trend_months == 12


def test_local_credentials_file(monkeypatch, tmp_path):
    path = tmp_path / "service-account.json"
    path.write_text(json.dumps({"type": "service_account", "project_id": "demo"}))
    settings = Settings(_env_file=None, env="LOCAL", firebase_credentials_path=str(path))
    monkeypatch.setattr(secret_manager, "get_settings", lambda: settings)

    assert secret_manager.get_firebase_credentials_info()["project_id"] == "demo"


def test_local_credentials_default_to_adc(monkeypatch):
    settings = Settings(_env_file=None, env="LOCAL", firebase_credentials_path="")
    monkeypatch.setattr(secret_manager, "get_settings", lambda: settings)
    assert secret_manager.get_firebase_credentials_info() is None


def test_local_api_key(monkeypatch):
    settings = Settings(_env_file=None, env="LOCAL", firebase_api_key="abc")
    monkeypatch.setattr(secret_manager, "get_settings", lambda: settings)
    assert secret_manager.get_firebase_api_key() == "abc"


# ============ Tables and charts ============

def make_row(pid, comment=""):
    prediction = PredictionRecord(
        id=pid,
        user_id="u1",
        crop_type="wheat",
        confidence=0.875,
        result="Leaf rust",
        timestamp=datetime(2024, 8, 1, 9, 30, tzinfo=timezone.utc),
        expert_comment=comment,
    )
    return PredictionRow(prediction=prediction, user_email="u1@example.com")


def test_predictions_frame():
    frame = charts.predictions_frame([make_row("p1"), make_row("p2", "ok")])
    assert list(frame.columns) == charts.PREDICTION_COLUMNS
    assert frame["Confidence"].tolist() == ["87.5%", "87.5%"]
    assert frame["Status"].tolist() == ["Pending", "Reviewed"]
    assert frame["Date"].iloc[0] == "2024-08-01 09:30"


def test_empty_frames_keep_columns():
    assert list(charts.predictions_frame([]).columns) == charts.PREDICTION_COLUMNS
    assert list(charts.users_frame([]).columns) == charts.USER_COLUMNS


def test_users_frame_detailed():
    users = [UserRecord(id="u1", email="a@example.com", prediction_count=3)]
    assert "ID" not in charts.users_frame(users).columns
    frame = charts.users_frame(users, detailed=True)
    assert frame["ID"].tolist() == ["u1"]
    assert frame["Name"].tolist() == ["N/A"]
    assert frame["Joined"].tolist() == ["N/A"]


def test_csv_export():
    frame = pd.DataFrame([{"a": 1, "b": "x"}])
    assert charts.to_csv(frame).decode("utf-8").splitlines() == ["a,b", "1,x"]


def test_figures():
    distribution = [CategoryCount(name="wheat", value=2), CategoryCount(name="corn", value=1)]
    assert charts.distribution_bar(distribution, "Crops").data[0].type == "bar"
    assert charts.distribution_pie(distribution, "Crops").data[0].type == "pie"
    assert charts.review_pie(ReviewSplit(reviewed=1, pending=2)).data[0].type == "pie"

    trend = [TrendBucket(month=12, year=2023, count=2), TrendBucket(month=1, year=2024, count=1)]
    line = charts.trend_line(trend)
    assert list(line.data[0].x) == ["12/2023", "1/2024"]
    assert list(line.data[0].y) == [2, 1]


def test_role_colors():
    assert charts.get_role_color("admin") == "#6f42c1"
    assert charts.get_role_color("superuser") == "#6c757d"
