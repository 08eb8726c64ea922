"""Lead queue - shared work queue with exclusive, time-bounded record leases."""

__version__ = "0.1.0"
