from enum import Enum


class NotFound(Exception):
    """A referenced business or service does not exist. Not retryable."""


class BusinessNotFound(NotFound):
    def __init__(self, reference: str | int):
        super().__init__(f"Business not found: {reference}")
        self.reference = reference


class BookingAvailabilityErrorCode(str, Enum):
    DATE_OUTSIDE_HORIZON = "DATE_OUTSIDE_HORIZON"
    LEAD_TIME_VIOLATION = "LEAD_TIME_VIOLATION"
    SLOT_JUST_TAKEN = "SLOT_JUST_TAKEN"
    PAYMENT_TYPE_NOT_ALLOWED = "PAYMENT_TYPE_NOT_ALLOWED"
    NO_CAPACITY_FOR_SELECTED_SERVICES = "NO_CAPACITY_FOR_SELECTED_SERVICES"


class BookingAvailabilityError(Exception):
    """Expected, user-facing rejection of a requested booking time.

    ``alternatives`` holds slots the caller can offer instead; it is only
    populated for ``SLOT_JUST_TAKEN`` and ``NO_CAPACITY_FOR_SELECTED_SERVICES``.
    """

    def __init__(self, code: BookingAvailabilityErrorCode, message: str, alternatives=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.alternatives = list(alternatives or [])

    def __repr__(self) -> str:
        return f"BookingAvailabilityError(code={self.code.value!r}, alternatives={len(self.alternatives)})"
