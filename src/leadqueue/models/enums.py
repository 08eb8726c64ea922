"""Lead queue enumerations."""

from enum import Enum


class RefreshAction(str, Enum):
    """Why a refresh signal was published."""

    ASSIGN = "assign"
    RELEASE = "release"
    UNKNOWN_CHANGE = "unknown-change"


class ChangeType(str, Enum):
    """Change-feed change types."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    UNDELETE = "UNDELETE"
    GAP_CREATE = "GAP_CREATE"
    GAP_UPDATE = "GAP_UPDATE"
    GAP_DELETE = "GAP_DELETE"
    GAP_UNDELETE = "GAP_UNDELETE"
    GAP_OVERFLOW = "GAP_OVERFLOW"


class ViewState(str, Enum):
    """Queue view model lifecycle state."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"

    def can_transition_to(self, target: "ViewState") -> bool:
        """Every reconciliation passes through LOADING."""
        if target == ViewState.LOADING:
            return True
        if self == ViewState.LOADING:
            return target in {ViewState.READY, ViewState.ERROR}
        return False


class NoticeLevel(str, Enum):
    """Severity of a user-visible notice."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
