"""
Streamlit UI for CropView Admin.

Provides two gated dashboards over the farmers' crop predictions:
- Admin dashboard: user and prediction analytics, user and prediction
  tables, local settings
- Expert dashboard: review progress and the comment workflow for
  individual predictions

Implements:
- Login forms that re-verify the stored role (authentication alone does not authorize)
- Route gating through the Access Policy
- One SessionStore and one event loop per browser session

Run with: streamlit run cropview/main.py
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

import streamlit as st

from cropview import charts
from cropview.models import DashboardPreferences, Identity
from cropview.services.access_policy import (
    Area,
    Outcome,
    evaluate,
    evaluate_login_page,
    home_route,
    login_route,
)
from cropview.services.annotation import AnnotationWorkflow
from cropview.services.backends import create_backends
from cropview.services.dashboard_service import DashboardService
from cropview.services.errors import AuthError, CropViewError
from cropview.services.repository import RecordRepository
from cropview.services.routes import RouteMatch, area_pages, resolve_route
from cropview.services.secret_manager import get_settings
from cropview.services.session_store import SessionStore

logger = logging.getLogger(__name__)


# Page configuration
st.set_page_config(
    page_title="CropView Admin",
    page_icon="🌾",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better styling
st.markdown("""
<style>
    .status-reviewed {
        background-color: #d4edda;
        padding: 0.25rem 0.75rem;
        border-radius: 0.5rem;
        border-left: 4px solid #28a745;
    }
    .status-pending {
        background-color: #fff3cd;
        padding: 0.25rem 0.75rem;
        border-radius: 0.5rem;
        border-left: 4px solid #ffc107;
    }
    .role-badge {
        color: white;
        padding: 0.5rem;
        border-radius: 0.5rem;
        text-align: center;
        font-weight: bold;
    }
</style>
""", unsafe_allow_html=True)

PAGE_LABELS = {
    "admin-overview": "📊 Overview",
    "admin-users": "👥 Users",
    "admin-predictions": "🌱 Predictions",
    "admin-settings": "⚙️ Settings",
    "expert-overview": "📊 Overview",
    "expert-predictions": "📝 Review Predictions",
}


# ============ Session plumbing ============

def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs a coroutine on this browser session's event loop."""
    return st.session_state.event_loop.run_until_complete(coro)


def init_session_state():
    """Initialize Streamlit session state."""
    settings = get_settings()

    if "event_loop" not in st.session_state:
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        st.session_state.event_loop = asyncio.new_event_loop()

    if "session_store" not in st.session_state:
        try:
            backends = create_backends(settings)
        except (ValueError, RuntimeError, OSError) as e:
            logger.exception("Backend initialization failed")
            st.error(f"⚠️ Failed to initialize backends: {e}")
            st.stop()

        st.session_state.backends = backends
        store = SessionStore(backends.identity, make_repository())
        run_async(store.start())
        st.session_state.session_store = store

    if "route" not in st.session_state:
        st.session_state.route = "/login"

    if "preferences" not in st.session_state:
        st.session_state.preferences = DashboardPreferences()


def make_repository(reviewer: Optional[Identity] = None) -> RecordRepository:
    settings = get_settings()
    return RecordRepository(
        st.session_state.backends.documents,
        users_collection=settings.users_collection,
        predictions_collection=settings.predictions_collection,
        reviewer=reviewer,
    )


def make_dashboard_service(reviewer: Optional[Identity] = None) -> DashboardService:
    settings = get_settings()
    return DashboardService(
        make_repository(reviewer),
        trend_months=settings.trend_months,
        recent_limit=settings.recent_predictions_limit,
    )


def get_store() -> SessionStore:
    return st.session_state.session_store


def navigate(path: str):
    st.session_state.route = path
    st.rerun()


def load_service(reviewer: Optional[Identity] = None) -> DashboardService:
    """Fetches one snapshot for the current page."""
    service = make_dashboard_service(reviewer)
    with st.spinner("Loading data..."):
        run_async(service.refresh())
    if service.last_error:
        st.error(service.last_error)
    return service


# ============ Login ============

def render_login(area: Area):
    """Render the login form for an area."""
    store = get_store()
    decision = evaluate_login_page(store.identity, store.role, area, store.is_loading)

    if decision.outcome == Outcome.PENDING:
        st.info("Checking your session...")
        st.stop()
    if decision.outcome == Outcome.REDIRECT:
        navigate(decision.target)

    is_admin = area == Area.ADMIN_DASHBOARD
    col1, col2, col3 = st.columns([1, 2, 1])

    with col2:
        st.title("🌾 CropView")
        st.subheader("Admin Login" if is_admin else "Expert Login")

        with st.form(f"login_form_{area.value}"):
            email = st.text_input("Email", placeholder="you@example.com")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign In", use_container_width=True)

        if submitted:
            if not email.strip() or not password:
                st.error("Please enter your email and password.")
                return

            try:
                with st.spinner("Signing in..."):
                    run_async(store.sign_in(email, password, area))
            except AuthError as e:
                st.error(str(e))
                return

            st.success("Login successful")
            navigate(home_route(area))

        other_area = Area.EXPERT_DASHBOARD if is_admin else Area.ADMIN_DASHBOARD
        label = "Expert login →" if is_admin else "Admin login →"
        if st.button(label, key=f"switch_login_{area.value}"):
            navigate(login_route(other_area))


# ============ Shell ============

def render_sidebar(area: Area, page: str):
    """Render sidebar navigation for a gated area."""
    store = get_store()

    with st.sidebar:
        st.title("🌾 CropView")
        st.caption("Admin Dashboard" if area == Area.ADMIN_DASHBOARD else "Expert Dashboard")

        role_color = charts.get_role_color(store.role or "")
        st.markdown(
            f'<div class="role-badge" style="background-color: {role_color};">'
            f'{(store.role or "").upper()}</div>',
            unsafe_allow_html=True,
        )
        if store.identity and store.identity.email:
            st.caption(store.identity.email)

        st.markdown("---")
        for path, page_key in area_pages(area).items():
            if st.button(
                PAGE_LABELS.get(page_key, page_key),
                key=f"nav_{page_key}",
                use_container_width=True,
                type="primary" if page_key == page else "secondary",
            ):
                navigate(path)

        st.markdown("---")
        if st.button("🚪 Sign Out", use_container_width=True):
            try:
                run_async(store.sign_out())
            except AuthError as e:
                st.error(str(e))
                return
            st.session_state.pop("annotation", None)
            navigate(login_route(area))


def render_not_found(match: RouteMatch):
    st.header("404 - Page not found")
    st.markdown(f"The page `{match.path}` does not exist.")
    target = home_route(match.area) if match.area else "/login"
    if st.button("Go back"):
        navigate(target)


# ============ Admin pages ============

def render_admin_overview():
    st.header("📊 Dashboard Overview")
    service = load_service()
    view = service.admin_dashboard()

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total Users", view.total_users)
    col2.metric("Experts", view.expert_count)
    col3.metric("Farmers", view.farmer_count)
    col4.metric("Total Predictions", view.total_predictions)

    if not st.session_state.preferences.show_analytics:
        st.info("Analytics are hidden. Enable them in Settings.")
        return

    col1, col2 = st.columns(2)
    with col1:
        if view.role_distribution:
            st.plotly_chart(
                charts.distribution_pie(view.role_distribution, "User Roles"),
                use_container_width=True,
            )
        else:
            st.info("No users yet.")
    with col2:
        if view.crop_distribution:
            st.plotly_chart(
                charts.distribution_bar(view.crop_distribution, "Predictions by Crop Type"),
                use_container_width=True,
            )
        else:
            st.info("No predictions yet.")


def render_admin_users():
    st.header("👥 Users")
    search = st.text_input("Search users", placeholder="Search by email, name or role...")

    service = load_service()
    view = service.users_page(search)

    st.caption(f"Showing {len(view.users)} of {view.total} users")
    if not view.users:
        st.info("No users found.")
        return

    frame = charts.users_frame(view.users, detailed=st.session_state.preferences.detailed_user_info)
    st.dataframe(frame, use_container_width=True, hide_index=True)


def render_admin_predictions():
    st.header("🌱 Predictions")
    search = st.text_input("Search predictions", placeholder="Search by user, crop type or result...")

    service = load_service()
    view = service.predictions_page(search)

    if st.session_state.preferences.show_analytics:
        if view.trend:
            st.plotly_chart(charts.trend_line(view.trend), use_container_width=True)
        else:
            st.info("No predictions in the last months.")

    st.caption(f"Showing {len(view.rows)} of {view.total} predictions")
    if not view.rows:
        st.info("No predictions found.")
        return

    frame = charts.predictions_frame(view.rows)
    st.dataframe(frame, use_container_width=True, hide_index=True)
    st.download_button(
        "⬇️ Export CSV",
        data=charts.to_csv(frame),
        file_name="predictions.csv",
        mime="text/csv",
    )


def render_admin_settings():
    st.header("⚙️ Settings")
    st.caption("Preferences apply to this browser session only.")
    preferences: DashboardPreferences = st.session_state.preferences

    with st.form("settings_form"):
        st.subheader("Notifications")
        new_user = st.toggle("New user notifications", value=preferences.new_user_notifications)
        prediction = st.toggle("Prediction notifications", value=preferences.prediction_notifications)
        email = st.toggle("Email notifications", value=preferences.email_notifications)

        st.subheader("Display")
        analytics = st.toggle("Show analytics", value=preferences.show_analytics)
        detailed = st.toggle("Detailed user info", value=preferences.detailed_user_info)

        if st.form_submit_button("Save Settings"):
            st.session_state.preferences = DashboardPreferences(
                new_user_notifications=new_user,
                prediction_notifications=prediction,
                email_notifications=email,
                show_analytics=analytics,
                detailed_user_info=detailed,
            )
            st.success("Settings saved.")


# ============ Expert pages ============

def render_expert_overview():
    st.header("📊 Expert Overview")
    service = load_service(reviewer=get_store().identity)
    view = service.expert_dashboard()

    col1, col2, col3 = st.columns(3)
    col1.metric("Total Predictions", view.total_predictions)
    col2.metric("Reviewed", view.review.reviewed)
    col3.metric("Pending Review", view.review.pending)

    col1, col2 = st.columns(2)
    with col1:
        if view.review.total:
            st.plotly_chart(charts.review_pie(view.review), use_container_width=True)
    with col2:
        if view.crop_distribution:
            st.plotly_chart(
                charts.distribution_bar(view.crop_distribution, "Predictions by Crop Type"),
                use_container_width=True,
            )

    st.subheader("🕒 Recent Predictions")
    if not view.recent:
        st.info("No predictions yet.")
        return
    for row in view.recent:
        status_class = "status-reviewed" if row.prediction.is_reviewed else "status-pending"
        st.markdown(
            f"**{row.prediction.crop_type}** · {row.prediction.result} · {row.user_email} "
            f'<span class="{status_class}">{row.review_status}</span>',
            unsafe_allow_html=True,
        )


def get_annotation_workflow(service: DashboardService) -> AnnotationWorkflow:
    """Returns this session's workflow, pointed at the current page's snapshot."""
    if "annotation" not in st.session_state:
        st.session_state.annotation = AnnotationWorkflow(service.repository)
    workflow: AnnotationWorkflow = st.session_state.annotation
    workflow.repository = service.repository
    workflow.on_saved = lambda prediction: service.apply_comment(prediction.id, prediction.expert_comment)
    return workflow


def render_annotation_dialog(workflow: AnnotationWorkflow):
    prediction = workflow.selected
    st.subheader(f"📝 Comment on {prediction.crop_type} prediction")
    st.markdown(
        f"**Result:** {prediction.result}  \n"
        f"**Confidence:** {prediction.confidence * 100:.1f}%  \n"
        f"**Date:** {prediction.timestamp:%Y-%m-%d %H:%M}"
    )

    with st.form("annotation_form"):
        draft = st.text_area("Expert comment", value=workflow.draft, height=120)
        col1, col2 = st.columns(2)
        save = col1.form_submit_button("💾 Save Comment", use_container_width=True)
        cancel = col2.form_submit_button("Cancel", use_container_width=True)

    if cancel:
        workflow.cancel()
        st.rerun()

    if save:
        workflow.edit(draft)
        with st.spinner("Saving..."):
            saved = run_async(workflow.save())
        if saved:
            st.success("Comment saved.")
            st.rerun()

    if workflow.error:
        st.error(workflow.error)


def render_expert_predictions():
    st.header("📝 Review Predictions")
    service = load_service(reviewer=get_store().identity)
    workflow = get_annotation_workflow(service)

    if workflow.is_open:
        render_annotation_dialog(workflow)
        st.markdown("---")

    search = st.text_input("Search predictions", placeholder="Search by user, crop type or result...")
    view = service.expert_predictions(search)

    st.caption(f"Showing {len(view.rows)} of {view.total} predictions")
    if not view.rows:
        st.info("No predictions found.")
        return

    for row in view.rows:
        prediction = row.prediction
        with st.expander(
            f"{prediction.crop_type} · {prediction.result} · {row.user_email} · {row.review_status}"
        ):
            st.markdown(
                f"**Confidence:** {prediction.confidence * 100:.1f}%  \n"
                f"**Date:** {prediction.timestamp:%Y-%m-%d %H:%M}"
            )
            if prediction.is_reviewed:
                st.markdown(f"**Expert comment:** {prediction.expert_comment}")
            label = "Edit Comment" if prediction.is_reviewed else "Add Comment"
            if st.button(label, key=f"annotate_{prediction.id}", disabled=workflow.is_open):
                workflow.select(prediction)
                st.rerun()


PAGE_RENDERERS = {
    "admin-overview": render_admin_overview,
    "admin-users": render_admin_users,
    "admin-predictions": render_admin_predictions,
    "admin-settings": render_admin_settings,
    "expert-overview": render_expert_overview,
    "expert-predictions": render_expert_predictions,
}


# ============ Entry point ============

def render_gated(match: RouteMatch):
    """Gate a route behind its area's policy, then render it."""
    store = get_store()
    decision = evaluate(store.identity, store.role, match.area, store.is_loading)

    if decision.outcome == Outcome.PENDING:
        st.info("Loading...")
        st.stop()
    if decision.outcome == Outcome.REDIRECT:
        st.session_state.pop("annotation", None)
        navigate(decision.target)

    render_sidebar(match.area, match.page)

    if match.is_not_found:
        render_not_found(match)
        return

    try:
        PAGE_RENDERERS[match.page]()
    except CropViewError as e:
        logger.exception(f"Page {match.page} failed")
        st.error(f"Something went wrong: {e}")


def main():
    """Main application entry point."""
    init_session_state()
    store = get_store()

    run_async(store.refresh())
    for warning in store.pop_warnings():
        st.warning(warning)

    match = resolve_route(st.session_state.route)

    if match.redirect_to:
        navigate(match.redirect_to)

    if match.page == "admin-login":
        render_login(Area.ADMIN_DASHBOARD)
    elif match.page == "expert-login":
        render_login(Area.EXPERT_DASHBOARD)
    elif match.area is not None:
        render_gated(match)
    else:
        render_not_found(match)


if __name__ == "__main__":
    main()
