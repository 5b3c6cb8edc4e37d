"""Role capability matrix and the FastAPI dependencies that enforce it."""

from enum import Enum
from typing import Callable, Dict, FrozenSet

from fastapi import Depends

from .auth import get_current_user
from .errors import ForbiddenError
from .models.user import Role, User


class Action(str, Enum):
    CREATE_LISTING = "create_listing"
    EDIT_OWN_LISTING = "edit_own_listing"
    DELETE_OWN_LISTING = "delete_own_listing"
    DELETE_ANY_LISTING = "delete_any_listing"
    VIEW_OWN_LISTINGS = "view_own_listings"
    VIEW_AVAILABLE = "view_available"
    CLAIM = "claim"
    VIEW_OWN_CLAIMS = "view_own_claims"
    VIEW_ALL_LISTINGS = "view_all_listings"
    VIEW_USERS = "view_users"
    VIEW_DASHBOARD = "view_dashboard"


PERMISSIONS: Dict[str, FrozenSet[Action]] = {
    Role.DONOR.value: frozenset(
        {
            Action.CREATE_LISTING,
            Action.EDIT_OWN_LISTING,
            Action.DELETE_OWN_LISTING,
            Action.VIEW_OWN_LISTINGS,
        }
    ),
    Role.RECEIVER.value: frozenset(
        {Action.VIEW_AVAILABLE, Action.CLAIM, Action.VIEW_OWN_CLAIMS}
    ),
    Role.ADMIN.value: frozenset(
        {
            Action.VIEW_AVAILABLE,
            Action.VIEW_ALL_LISTINGS,
            Action.DELETE_ANY_LISTING,
            Action.VIEW_USERS,
            Action.VIEW_DASHBOARD,
        }
    ),
}

DENIED_MESSAGES = {
    Action.CREATE_LISTING: "Only donors can create listings.",
    Action.VIEW_OWN_LISTINGS: "Only donors can view their listings.",
    Action.CLAIM: "Only receivers can claim food.",
    Action.VIEW_OWN_CLAIMS: "Only receivers can view their claims.",
}


def can(user: User, action: Action) -> bool:
    return action in PERMISSIONS.get(user.role, frozenset())


def require(action: Action) -> Callable[..., User]:
    """Build a dependency returning the current user if their role allows ``action``."""

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not can(user, action):
            raise ForbiddenError(DENIED_MESSAGES.get(action, "Not authorized for this action"))
        return user

    return dependency


def ensure_can_edit(user: User, listing) -> None:
    if not (can(user, Action.EDIT_OWN_LISTING) and listing.donor_id == user.id):
        raise ForbiddenError("User not authorized to update this listing")


def ensure_can_delete(user: User, listing) -> None:
    if can(user, Action.DELETE_ANY_LISTING):
        return
    if can(user, Action.DELETE_OWN_LISTING) and listing.donor_id == user.id:
        return
    raise ForbiddenError("User not authorized to delete this listing")
