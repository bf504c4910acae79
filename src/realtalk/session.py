from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterator, Protocol

from .errors import (
    EmptyAnswer,
    InvalidScenario,
    SessionComplete,
    SessionNotStarted,
    StateError,
    TurnNotReady,
    WrongTurn,
)
from .evaluation_cache import STATUS_NONE, EvaluationCache
from .normalize import is_blank, norm_text
from .schemas import EvaluationResult, Scenario, Turn, UserTurn
from .transcription import STATE_EDITING, SpeechTranscriber, TranscriptionSession

logger = logging.getLogger(__name__)


class Evaluator(Protocol):
    async def evaluate(
        self,
        *,
        user_text: str,
        reference_text: str,
        user_prompt: str,
        topic: str,
    ) -> EvaluationResult:
        ...


@dataclass
class SessionState:
    scenario: Scenario
    current_turn_index: int = 0
    revealed_reference_indices: set[int] = field(default_factory=set)
    confirmed_answers: dict[int, str] = field(default_factory=dict)
    evaluations: EvaluationCache = field(default_factory=EvaluationCache)


@dataclass(frozen=True)
class HistoryEntry:
    turn_index: int
    turn: Turn
    confirmed_answer: str | None = None
    evaluation: EvaluationResult | None = None
    status: str = STATUS_NONE
    reference_revealed: bool = False


class History:
    """Completed turns up to the current index; iterating again re-reads live state."""

    def __init__(self, state: SessionState) -> None:
        self._state = state

    def __iter__(self) -> Iterator[HistoryEntry]:
        st = self._state
        for idx in range(st.current_turn_index + 1):
            yield HistoryEntry(
                turn_index=idx,
                turn=st.scenario.turns[idx],
                confirmed_answer=st.confirmed_answers.get(idx),
                evaluation=st.evaluations.get(idx),
                status=st.evaluations.status(idx),
                reference_revealed=idx in st.revealed_reference_indices,
            )

    def __len__(self) -> int:
        return self._state.current_turn_index + 1


class ScenarioSession:
    """Turn-sequencing state machine over one scenario at a time."""

    def __init__(
        self,
        evaluator: Evaluator,
        transcriber: SpeechTranscriber | None = None,
        *,
        max_restarts: int = 3,
    ) -> None:
        self._evaluator = evaluator
        self.transcription = TranscriptionSession(transcriber, max_restarts=max_restarts)
        self._state: SessionState | None = None

    # ---------------- lifecycle ----------------
    def start(self, scenario: Scenario) -> SessionState:
        if scenario is None or not scenario.turns:
            raise InvalidScenario("scenario has no turns")
        if self._state is not None:
            # orphan whatever the previous attempt still has in flight
            self._state.evaluations.close()
            self.transcription.reset()
        self._state = SessionState(scenario=scenario)
        logger.info(
            "session_event: start title=%r turns=%s",
            scenario.title,
            len(scenario.turns),
        )
        return self._state

    def close(self) -> None:
        if self._state is not None:
            self._state.evaluations.close()
        self.transcription.reset()

    def _require_started(self) -> None:
        if self._state is None:
            raise SessionNotStarted("no scenario started")

    @property
    def started(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> SessionState:
        if self._state is None:
            raise SessionNotStarted("no scenario started")
        return self._state

    @property
    def scenario(self) -> Scenario:
        return self.state.scenario

    @property
    def current_turn_index(self) -> int:
        return self.state.current_turn_index

    @property
    def is_last_turn(self) -> bool:
        st = self.state
        return st.current_turn_index >= len(st.scenario.turns) - 1

    def current_turn(self) -> Turn:
        st = self.state
        return st.scenario.turns[st.current_turn_index]

    def turn(self, turn_index: int) -> Turn:
        st = self.state
        if not 0 <= turn_index < len(st.scenario.turns):
            raise WrongTurn(turn_index, st.current_turn_index, "out of range")
        return st.scenario.turns[turn_index]

    # ---------------- references ----------------
    def reveal_reference(self, turn_index: int) -> UserTurn | None:
        st = self.state
        turn = self.turn(turn_index)
        if turn_index > st.current_turn_index or not isinstance(turn, UserTurn):
            return None
        st.revealed_reference_indices.add(turn_index)
        return turn

    def is_reference_revealed(self, turn_index: int) -> bool:
        return turn_index in self.state.revealed_reference_indices

    # ---------------- answers ----------------
    def submit_answer(self, turn_index: int, text: str) -> asyncio.Task:
        """Record the confirmed answer and request its evaluation.

        Returns the evaluation task; awaiting it yields the EvaluationResult or
        raises UpstreamError. Must be called from within a running event loop.
        """
        st = self.state
        if turn_index != st.current_turn_index:
            raise WrongTurn(turn_index, st.current_turn_index)
        turn = st.scenario.turns[turn_index]
        if not isinstance(turn, UserTurn):
            raise WrongTurn(turn_index, st.current_turn_index, "not a user turn")
        if is_blank(text):
            raise EmptyAnswer()
        answer = norm_text(text)
        # raises EvaluationInFlight before anything is mutated
        st.evaluations.check_available(turn_index, answer)

        st.confirmed_answers[turn_index] = answer
        scenario = st.scenario
        evaluator = self._evaluator

        async def _request() -> EvaluationResult:
            return await evaluator.evaluate(
                user_text=answer,
                reference_text=turn.reference.answer,
                user_prompt=turn.prompt_native,
                topic=scenario.title,
            )

        logger.info("session_event: submit turn=%s answer_len=%s", turn_index, len(answer))
        return st.evaluations.submit(turn_index, answer, _request)

    def confirmed_answer(self, turn_index: int) -> str | None:
        return self.state.confirmed_answers.get(turn_index)

    def evaluation(self, turn_index: int) -> EvaluationResult | None:
        return self.state.evaluations.get(turn_index)

    def evaluation_status(self, turn_index: int) -> str:
        return self.state.evaluations.status(turn_index)

    def evaluation_task(self, turn_index: int) -> asyncio.Task | None:
        return self.state.evaluations.pending_task(turn_index)

    # ---------------- speech ----------------
    def start_recording(self) -> None:
        self._require_started()
        self.transcription.start()

    async def record_once(self, audio: bytes, mime_type: str) -> str:
        self._require_started()
        return await self.transcription.capture_once(audio, mime_type)

    def confirm_recording(self, edited_text: str | None = None) -> asyncio.Task:
        st = self.state
        if self.transcription.state != STATE_EDITING:
            raise StateError(f"nothing to confirm (state={self.transcription.state})")
        text = self.transcription.editable_text if edited_text is None else edited_text
        task = self.submit_answer(st.current_turn_index, text)
        self.transcription.confirm(text)
        return task

    # ---------------- navigation ----------------
    def advance(self) -> Turn:
        st = self.state
        idx = st.current_turn_index
        turn = st.scenario.turns[idx]
        if isinstance(turn, UserTurn) and idx not in st.confirmed_answers:
            raise TurnNotReady(f"turn {idx} needs an answer first")
        if idx >= len(st.scenario.turns) - 1:
            raise SessionComplete("already at the final turn")
        self.transcription.reset()
        st.current_turn_index = idx + 1
        logger.info("session_event: advance turn=%s", st.current_turn_index)
        return st.scenario.turns[st.current_turn_index]

    def history(self) -> History:
        return History(self.state)
