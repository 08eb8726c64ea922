"""Lead queue API package."""

from leadqueue.api.router import router

__all__ = ["router"]
