"""Exception hierarchy for Pulsewatch."""


class PulsewatchError(Exception):
    """Base class for all Pulsewatch errors."""

    pass


class StoreError(PulsewatchError):
    """Raised when the result store fails an operation."""

    pass


class StoreWriteError(StoreError):
    """Raised when a result append or status update is rejected."""

    pass


class StoreUnavailableError(StoreError):
    """Raised when the result store cannot be reached at all."""

    pass


class InvalidCheckError(PulsewatchError):
    """Raised when a check definition cannot be scheduled."""

    def __init__(self, check_id: str, reason: str) -> None:
        super().__init__(f"Check {check_id} is invalid: {reason}")
        self.check_id = check_id
        self.reason = reason
