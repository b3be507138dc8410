"""
Access Policy for the CropView dashboards.

Pure decision functions mapping (identity, role, area) to an outcome:
- ALLOW: render the area
- PENDING: role resolution in flight, render a loading indicator
- REDIRECT: send the visitor to the area's login route

Role checks are exact string matches against the stored role, so any role
outside {admin, expert, farmer} is never privileged.

Documents are accessed with Admin SDK credentials, which Firestore security
rules do not apply to. The enforced checks are the login re-verification
here and the reviewer role re-read the repository performs before every
comment write.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cropview.models import Identity, Role
from cropview.services.errors import AccessDenied

logger = logging.getLogger(__name__)


class Area(str, Enum):
    """Gated areas of the app."""
    ADMIN_DASHBOARD = "admin-dashboard"
    EXPERT_DASHBOARD = "expert-dashboard"


class Outcome(str, Enum):
    ALLOW = "allow"
    PENDING = "pending"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class AccessDecision:
    """Result of a policy evaluation."""
    outcome: Outcome
    target: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(Outcome.ALLOW)

    @classmethod
    def pending(cls) -> "AccessDecision":
        return cls(Outcome.PENDING)

    @classmethod
    def redirect(cls, target: str) -> "AccessDecision":
        return cls(Outcome.REDIRECT, target)


# Area -> role required, login route, home route
AREA_RULES: dict[Area, dict[str, str]] = {
    Area.ADMIN_DASHBOARD: {
        "role": Role.ADMIN.value,
        "login": "/login",
        "home": "/dashboard",
    },
    Area.EXPERT_DASHBOARD: {
        "role": Role.EXPERT.value,
        "login": "/expert-login",
        "home": "/expert",
    },
}

DENIAL_MESSAGES = {
    Area.ADMIN_DASHBOARD: "Access denied. Only administrators can access this dashboard.",
    Area.EXPERT_DASHBOARD: "Access denied. Only experts can access this dashboard.",
}

USER_NOT_FOUND_MESSAGE = "User not found in the system."


def required_role(area: Area) -> str:
    return AREA_RULES[Area(area)]["role"]


def login_route(area: Area) -> str:
    return AREA_RULES[Area(area)]["login"]


def home_route(area: Area) -> str:
    return AREA_RULES[Area(area)]["home"]


def area_for_role(role: Optional[str]) -> Optional[Area]:
    """Returns the area a role may enter, if any."""
    for area, rules in AREA_RULES.items():
        if role == rules["role"]:
            return area
    return None


def has_access(identity: Optional[Identity], role: Optional[str], area: Area) -> bool:
    """Checks whether a resolved identity/role may enter an area."""
    return identity is not None and role == required_role(area)


def evaluate(
    identity: Optional[Identity],
    role: Optional[str],
    area: Area,
    is_loading: bool = False,
) -> AccessDecision:
    """
    Decides whether a gated area may be rendered.

    Args:
        identity: Current identity, None when signed out
        role: Resolved role, None while unresolved or signed out
        area: Area being entered
        is_loading: True while the role lookup is in flight

    Returns:
        PENDING while loading, ALLOW for a matching role, else REDIRECT to the area's login
    """
    if is_loading:
        return AccessDecision.pending()

    if has_access(identity, role, area):
        return AccessDecision.allow()

    return AccessDecision.redirect(login_route(area))


def evaluate_login_page(
    identity: Optional[Identity],
    role: Optional[str],
    area: Area,
    is_loading: bool = False,
) -> AccessDecision:
    """
    Decides what a login page shows.

    A visitor who already holds the area's role is sent straight to the
    area's home; everyone else sees the form.
    """
    if is_loading:
        return AccessDecision.pending()

    if has_access(identity, role, area):
        return AccessDecision.redirect(home_route(area))

    return AccessDecision.allow()


def verify_login_role(role: Optional[str], area: Area) -> None:
    """
    Re-verifies the stored role of a freshly authenticated identity.

    Authentication alone does not authorize. The caller must sign the
    session out when this raises.

    Args:
        role: Role read from the user's document (None when the document is missing)
        area: Area the login form belongs to

    Raises:
        AccessDenied: If the document is missing or the role does not match
    """
    area = Area(area)

    if role is None:
        raise AccessDenied(USER_NOT_FOUND_MESSAGE)

    if role != required_role(area):
        logger.warning(f"Role '{role}' denied access to {area.value}")
        raise AccessDenied(DENIAL_MESSAGES[area])
