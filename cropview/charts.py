"""
Table and chart builders for the Streamlit pages.

Turns view-models into pandas DataFrames (tables, CSV export) and plotly
figures. Kept apart from main.py so they can be tested without a
Streamlit runtime.
"""

from typing import Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from cropview.models import UserRecord
from cropview.schemas import CategoryCount, PredictionRow, ReviewSplit, TrendBucket

ROLE_COLORS = {
    "admin": "#6f42c1",
    "expert": "#007bff",
    "farmer": "#28a745",
}

REVIEW_COLORS = {
    "Reviewed": "#28a745",
    "Pending": "#ffc107",
}

PREDICTION_COLUMNS = ["User", "Crop Type", "Result", "Confidence", "Date", "Status", "Expert Comment"]
USER_COLUMNS = ["Email", "Name", "Role", "Predictions", "Joined"]


def get_role_color(role: str) -> str:
    """Returns color for user role."""
    return ROLE_COLORS.get(role, "#6c757d")


# ============ DataFrames ============

def users_frame(users: list[UserRecord], detailed: bool = False) -> pd.DataFrame:
    """User table. ``detailed`` adds the document id column."""
    records = [
        {
            "Email": u.email,
            "Name": u.display_name,
            "Role": u.role,
            "Predictions": u.prediction_count,
            "Joined": u.created_at.strftime("%Y-%m-%d") if u.created_at else "N/A",
            **({"ID": u.id} if detailed else {}),
        }
        for u in users
    ]
    columns = USER_COLUMNS + (["ID"] if detailed else [])
    return pd.DataFrame(records, columns=columns)


def predictions_frame(rows: list[PredictionRow]) -> pd.DataFrame:
    """Prediction table, one row per prediction, in the order given."""
    records = [
        {
            "User": r.user_email,
            "Crop Type": r.prediction.crop_type,
            "Result": r.prediction.result,
            "Confidence": f"{r.prediction.confidence * 100:.1f}%",
            "Date": r.prediction.timestamp.strftime("%Y-%m-%d %H:%M"),
            "Status": r.review_status,
            "Expert Comment": r.prediction.expert_comment,
        }
        for r in rows
    ]
    return pd.DataFrame(records, columns=PREDICTION_COLUMNS)


def to_csv(frame: pd.DataFrame) -> bytes:
    return frame.to_csv(index=False).encode("utf-8")


# ============ Figures ============

def distribution_pie(
    distribution: list[CategoryCount],
    title: str,
    color_map: Optional[dict[str, str]] = None,
) -> go.Figure:
    frame = pd.DataFrame([c.model_dump() for c in distribution], columns=["name", "value"])
    return px.pie(
        frame,
        names="name",
        values="value",
        title=title,
        color="name",
        color_discrete_map=color_map or ROLE_COLORS,
    )


def distribution_bar(distribution: list[CategoryCount], title: str) -> go.Figure:
    frame = pd.DataFrame([c.model_dump() for c in distribution], columns=["name", "value"])
    fig = px.bar(frame, x="name", y="value", title=title)
    fig.update_layout(xaxis_title=None, yaxis_title="Predictions")
    return fig


def review_pie(split: ReviewSplit) -> go.Figure:
    return distribution_pie(split.as_categories(), "Review Status", REVIEW_COLORS)


def trend_line(trend: list[TrendBucket]) -> go.Figure:
    """Monthly prediction counts, in the chronological order given."""
    frame = pd.DataFrame(
        [{"Month": b.label, "Predictions": b.count} for b in trend],
        columns=["Month", "Predictions"],
    )
    fig = px.line(frame, x="Month", y="Predictions", markers=True, title="Predictions per Month")
    fig.update_xaxes(type="category")
    return fig
