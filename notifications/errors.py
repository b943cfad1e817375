from __future__ import annotations


class LifecycleError(RuntimeError):
    """A user-facing precondition failed (no consent, unknown user or token)."""

    def __init__(self, code: str, status_code: int = 400) -> None:
        super().__init__(code)
        self.code = code
        self.status_code = status_code


class DuplicateSchedule(RuntimeError):
    def __init__(self, flight_id: str, kind: str) -> None:
        super().__init__(f"notification {kind!r} already scheduled for flight {flight_id}")
        self.flight_id = flight_id
        self.kind = kind


class DeliveryFailure(RuntimeError):
    pass


class SelectionFailure(RuntimeError):
    pass
