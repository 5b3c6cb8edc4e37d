"""FoodShare: surplus food listings, claims and moderation."""

from .api import app

__all__ = ["app"]
