"""
Exception hierarchy for the yield engine.
"""


class YieldError(Exception):
    """Base class for all yield engine errors."""


class ConfigurationError(YieldError):
    """Hotel yield configuration violates an invariant."""


class RuleValidationError(ConfigurationError):
    """A pricing rule violates an invariant at write time."""


class UnknownJobError(YieldError):
    """A job name that is not registered with the scheduler."""

    def __init__(self, job_name: str, known: list):
        self.job_name = job_name
        super().__init__(f"Unknown job: {job_name}. Valid jobs: {sorted(known)}")


class HotelTimeoutError(YieldError):
    """A hotel's sub-task exceeded the per-hotel time budget."""

    def __init__(self, hotel_id: str, timeout: float):
        self.hotel_id = hotel_id
        self.timeout = timeout
        super().__init__(f"Hotel {hotel_id} exceeded {timeout:.1f}s budget")
