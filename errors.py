"""Typed failures raised by the registry, the blob stores and upload validation."""


class TransferError(Exception):
    """Base class for every failure a client can be told about."""

    status_code = 500


class NotFoundError(TransferError):
    """Unknown or expired code, a code with no file yet, or a missing blob."""

    status_code = 404

    def __init__(self, what: str = "File not found") -> None:
        super().__init__(what)


class RejectedError(TransferError):
    """Upload refused: disallowed extension or media type, oversize, or malformed."""

    status_code = 400


class CapacityExhaustedError(TransferError):
    """No free code could be found within the allocation retry budget."""

    status_code = 503

    def __init__(self, live: int, attempts: int) -> None:
        self.live = live
        self.attempts = attempts
        super().__init__("Can't generate more keys")
