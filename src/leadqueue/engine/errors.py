"""Lead queue errors.

Every failure that crosses the assignment client or view model boundary is one
of these kinds. ``AlreadyHeld``, ``NoEligibleRecord`` and ``RecordUnavailable``
are expected business outcomes, not faults.
"""


class LeadQueueError(Exception):
    """Base error for lead queue operations."""

    expected = False

    def __init__(self, message: str, code: str = "LEADQUEUE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TransientNetworkError(LeadQueueError):
    """A call to an external service failed; the next reconciliation retries."""

    def __init__(self, message: str = "The lead queue service could not be reached"):
        super().__init__(message, "TRANSIENT_NETWORK_ERROR")


class AlreadyHeld(LeadQueueError):
    """The holder already holds an unexpired lease on another record."""

    expected = True

    def __init__(self, holder_id: str = "", record_id: str = ""):
        super().__init__(
            "You already have a record assigned. Release it before claiming another.",
            "ALREADY_HELD",
        )
        self.holder_id = holder_id
        self.record_id = record_id


class NoEligibleRecord(LeadQueueError):
    """No unleased record matches the requested filters."""

    expected = True

    def __init__(self, message: str = "No records are available to assign right now."):
        super().__init__(message, "NO_ELIGIBLE_RECORD")


class RecordUnavailable(LeadQueueError):
    """The requested record is leased by someone else."""

    expected = True

    def __init__(self, record_id: str = ""):
        super().__init__(
            "This record is already assigned to another user.",
            "RECORD_UNAVAILABLE",
        )
        self.record_id = record_id


class StoreUnavailable(LeadQueueError):
    """The lease store is missing or misconfigured."""

    def __init__(self, message: str = "Lease store is not configured. Please contact your administrator."):
        super().__init__(message, "STORE_UNAVAILABLE")


class StaleResponseDiscarded(LeadQueueError):
    """A reconciliation response was superseded by a later request."""

    def __init__(self, sequence: int, latest: int):
        super().__init__(
            f"Discarded reconciliation {sequence}; latest issued is {latest}",
            "STALE_RESPONSE_DISCARDED",
        )
        self.sequence = sequence
        self.latest = latest


ERRORS_BY_CODE: dict[str, type[LeadQueueError]] = {
    "TRANSIENT_NETWORK_ERROR": TransientNetworkError,
    "ALREADY_HELD": AlreadyHeld,
    "NO_ELIGIBLE_RECORD": NoEligibleRecord,
    "RECORD_UNAVAILABLE": RecordUnavailable,
    "STORE_UNAVAILABLE": StoreUnavailable,
}


def as_lead_queue_error(error: BaseException) -> LeadQueueError:
    """Convert any failure from an external call into the taxonomy."""
    if isinstance(error, LeadQueueError):
        return error
    return TransientNetworkError(f"Unexpected failure: {type(error).__name__}: {error}")
