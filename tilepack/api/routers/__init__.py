"""API routers for tilepack."""

from . import maps

__all__ = ["maps"]
