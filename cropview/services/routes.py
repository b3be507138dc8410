"""
Client-side route table.

Maps URL-style paths to page keys and the gated area they belong to.
The Streamlit entry point renders whatever page a path resolves to.
"""

from dataclasses import dataclass
from typing import Optional

from cropview.services.access_policy import Area


@dataclass(frozen=True)
class RouteMatch:
    """A resolved route."""
    path: str
    page: str
    area: Optional[Area] = None
    redirect_to: Optional[str] = None

    @property
    def is_not_found(self) -> bool:
        return self.page.endswith("not-found")


PUBLIC_ROUTES = {
    "/login": "admin-login",
    "/expert-login": "expert-login",
}

AREA_ROUTES: dict[str, tuple[Area, dict[str, str], str]] = {
    "/dashboard": (
        Area.ADMIN_DASHBOARD,
        {
            "": "admin-overview",
            "users": "admin-users",
            "predictions": "admin-predictions",
            "settings": "admin-settings",
        },
        "dashboard-not-found",
    ),
    "/expert": (
        Area.EXPERT_DASHBOARD,
        {
            "": "expert-overview",
            "predictions": "expert-predictions",
        },
        "expert-not-found",
    ),
}

NOT_FOUND_PAGE = "not-found"


def normalize_path(path: str) -> str:
    path = "/" + (path or "").strip().strip("/")
    return path


def resolve_route(path: str) -> RouteMatch:
    """
    Resolves a path against the route table.

    Unknown children of a gated prefix resolve to that area's not-found
    page, so they stay behind the area's gate.
    """
    path = normalize_path(path)

    if path == "/":
        return RouteMatch(path=path, page="root", redirect_to="/login")

    if path in PUBLIC_ROUTES:
        return RouteMatch(path=path, page=PUBLIC_ROUTES[path])

    for prefix, (area, children, not_found) in AREA_ROUTES.items():
        if path == prefix or path.startswith(prefix + "/"):
            child = path[len(prefix):].strip("/")
            return RouteMatch(path=path, page=children.get(child, not_found), area=area)

    return RouteMatch(path=path, page=NOT_FOUND_PAGE)


def area_pages(area: Area) -> dict[str, str]:
    """Returns {path: page} for an area's navigable pages."""
    for prefix, (route_area, children, _) in AREA_ROUTES.items():
        if route_area == area:
            return {
                (prefix + "/" + child) if child else prefix: page
                for child, page in children.items()
            }
    return {}
