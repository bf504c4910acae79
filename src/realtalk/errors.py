from __future__ import annotations


class RealTalkError(Exception):
    """Base class for every error raised by the practice core."""

    retryable: bool = False


# ---------------- validation: bad input, synchronous ----------------
class ValidationError(RealTalkError):
    pass


class EmptyAnswer(ValidationError):
    def __init__(self, message: str = "answer is blank") -> None:
        super().__init__(message)


class WrongTurn(ValidationError):
    def __init__(self, turn_index: int, current_index: int, reason: str = "") -> None:
        self.turn_index = turn_index
        self.current_index = current_index
        detail = f"turn {turn_index} is not answerable (current={current_index})"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)


class InvalidScenario(ValidationError):
    pass


class InvalidProviderInput(ValidationError):
    pass


# ---------------- state: caller misuse of a state machine ----------------
class StateError(RealTalkError):
    pass


class SessionNotStarted(StateError):
    pass


class SessionComplete(StateError):
    pass


class TurnNotReady(StateError):
    pass


class RecordingAlreadyActive(StateError):
    pass


class RecordingNotActive(StateError):
    pass


class EvaluationInFlight(StateError):
    def __init__(self, turn_index: int) -> None:
        self.turn_index = turn_index
        super().__init__(f"evaluation already pending for turn {turn_index}")


# ---------------- upstream: collaborator failures, retryable ----------------
class UpstreamError(RealTalkError):
    retryable = True


class UpstreamUnavailable(UpstreamError):
    pass


class MalformedResponse(UpstreamError):
    pass


class PersistenceError(UpstreamError):
    pass


# ---------------- speech transcriber reports ----------------
class TranscriberError(UpstreamError):
    pass


class TranscriberTransportError(TranscriberError):
    pass


class TranscriberPermissionDenied(TranscriberError):
    retryable = False
