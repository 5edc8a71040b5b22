"""Request and outcome models shared by the intake and dispatch stages."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ReplayRequest:
    url: str             # host base URL + rewritten path
    enqueued_at: float   # epoch seconds

    @property
    def bucket(self) -> int:
        return int(self.enqueued_at // 1)


@dataclass(frozen=True)
class ReplayOutcome:
    request: ReplayRequest
    started_at: float
    finished_at: float
    response_code: int | None = None
    error_message: str | None = None

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    @property
    def failed(self) -> bool:
        """True when the request never got a response (transport-level failure)."""
        return self.error_message is not None
