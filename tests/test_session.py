import asyncio

import pytest

from realtalk.errors import (
    EmptyAnswer,
    EvaluationInFlight,
    InvalidScenario,
    SessionComplete,
    SessionNotStarted,
    TurnNotReady,
    UpstreamUnavailable,
    WrongTurn,
)
from realtalk.evaluation_cache import STATUS_DONE, STATUS_FAILED, STATUS_NONE, STATUS_PENDING
from realtalk.schemas import AiTurn, Scenario, UserTurn
from realtalk.session import ScenarioSession
from realtalk.transcription import STATE_CONFIRMED, STATE_EDITING

from tests.fakes import FakeEvaluator, greeting_scenario, meeting_scenario


def _assert_evaluations_have_answers(session: ScenarioSession) -> None:
    st = session.state
    for idx, _ in st.evaluations.items():
        assert idx in st.confirmed_answers


def test_start_rejects_scenario_without_turns():
    session = ScenarioSession(FakeEvaluator())
    with pytest.raises(InvalidScenario):
        session.start(Scenario(title="Empty", description="", turns=()))
    assert not session.started
    with pytest.raises(SessionNotStarted):
        session.current_turn()


def test_greeting_scenario_end_to_end():
    async def _run():
        evaluator = FakeEvaluator()
        session = ScenarioSession(evaluator)
        session.start(greeting_scenario())
        assert session.current_turn_index == 0
        assert isinstance(session.current_turn(), AiTurn)

        turn = session.advance()
        assert isinstance(turn, UserTurn)
        assert session.current_turn_index == 1

        task = session.submit_answer(1, "  hi   there ")
        assert session.confirmed_answer(1) == "hi there"
        result = await task
        assert result.feedback == "feedback for hi there"
        assert session.evaluation(1) == result
        assert session.evaluation_status(1) == STATUS_DONE
        assert evaluator.calls == [
            {
                "user_text": "hi there",
                "reference_text": "Hi there!",
                "user_prompt": "回应问候",
                "topic": "Greeting",
            }
        ]

        with pytest.raises(SessionComplete):
            session.advance()
        assert session.current_turn_index == 1
        _assert_evaluations_have_answers(session)
    asyncio.run(_run())


def test_advance_does_not_wait_for_evaluation():
    async def _run():
        evaluator = FakeEvaluator()
        evaluator.gate = asyncio.Event()
        session = ScenarioSession(evaluator)
        session.start(meeting_scenario())
        session.advance()
        task = session.submit_answer(1, "I have a conflict at three")
        await asyncio.sleep(0)
        assert session.evaluation_status(1) == STATUS_PENDING

        session.advance()
        assert session.current_turn_index == 2
        assert session.evaluation_status(1) == STATUS_PENDING

        evaluator.gate.set()
        await task
        # the late result still lands on the earlier turn
        assert session.evaluation(1) is not None
        entries = list(session.history())
        assert [e.turn_index for e in entries] == [0, 1, 2]
        assert entries[1].evaluation == session.evaluation(1)
        assert entries[1].status == STATUS_DONE
    asyncio.run(_run())


def test_submit_validation_errors_leave_state_untouched():
    async def _run():
        session = ScenarioSession(FakeEvaluator())
        session.start(meeting_scenario())

        with pytest.raises(WrongTurn):
            session.submit_answer(0, "hello")  # AI turn
        session.advance()
        with pytest.raises(WrongTurn):
            session.submit_answer(3, "too early")
        with pytest.raises(EmptyAnswer):
            session.submit_answer(1, "   \n ")

        assert session.state.confirmed_answers == {}
        assert session.evaluation_status(1) == STATUS_NONE
    asyncio.run(_run())


def test_advance_blocked_until_user_turn_answered():
    async def _run():
        session = ScenarioSession(FakeEvaluator())
        session.start(meeting_scenario())
        session.advance()
        with pytest.raises(TurnNotReady):
            session.advance()
        assert session.current_turn_index == 1

        # an unanswered final turn is not complete yet
        last = ScenarioSession(FakeEvaluator())
        last.start(greeting_scenario())
        last.advance()
        with pytest.raises(TurnNotReady):
            last.advance()

        await session.submit_answer(1, "Sorry, I have a conflict.")
        session.advance()
        assert session.current_turn_index == 2
    asyncio.run(_run())


def test_resubmission_replaces_answer_and_evaluation():
    async def _run():
        evaluator = FakeEvaluator()
        session = ScenarioSession(evaluator)
        session.start(greeting_scenario())
        session.advance()

        first = await session.submit_answer(1, "hello")
        assert session.evaluation(1) == first

        task = session.submit_answer(1, "hi there")
        assert session.confirmed_answer(1) == "hi there"
        assert session.evaluation(1) is None
        assert session.evaluation_status(1) == STATUS_PENDING

        second = await task
        assert session.evaluation(1) == second
        assert second.feedback == "feedback for hi there"
        assert len(evaluator.calls) == 2
    asyncio.run(_run())


def test_duplicate_submission_is_coalesced_and_different_one_rejected():
    async def _run():
        evaluator = FakeEvaluator()
        evaluator.gate = asyncio.Event()
        session = ScenarioSession(evaluator)
        session.start(greeting_scenario())
        session.advance()

        t1 = session.submit_answer(1, "hi there")
        t2 = session.submit_answer(1, "hi  there")
        assert t1 is t2

        with pytest.raises(EvaluationInFlight):
            session.submit_answer(1, "something else")
        assert session.confirmed_answer(1) == "hi there"

        evaluator.gate.set()
        await t1
        assert len(evaluator.calls) == 1
    asyncio.run(_run())


def test_failed_evaluation_is_retryable():
    async def _run():
        evaluator = FakeEvaluator(fail_times=1)
        session = ScenarioSession(evaluator)
        session.start(greeting_scenario())
        session.advance()

        with pytest.raises(UpstreamUnavailable):
            await session.submit_answer(1, "hi there")
        assert session.evaluation_status(1) == STATUS_FAILED
        assert session.evaluation(1) is None
        assert session.confirmed_answer(1) == "hi there"
        assert session.current_turn_index == 1

        result = await session.submit_answer(1, "hi there")
        assert session.evaluation(1) == result
        _assert_evaluations_have_answers(session)
    asyncio.run(_run())


def test_reveal_reference_only_for_reached_user_turns():
    session = ScenarioSession(FakeEvaluator())
    session.start(meeting_scenario())
    assert session.reveal_reference(0) is None
    assert session.reveal_reference(1) is None  # not reached yet
    assert not session.is_reference_revealed(1)

    session.advance()
    turn = session.reveal_reference(1)
    assert isinstance(turn, UserTurn)
    assert turn.reference.key_phrases == ("have a conflict", "push it to")
    assert session.reveal_reference(1) is turn
    assert session.state.revealed_reference_indices == {1}
    with pytest.raises(WrongTurn):
        session.reveal_reference(9)


def test_history_is_restartable_and_live():
    async def _run():
        session = ScenarioSession(FakeEvaluator())
        session.start(meeting_scenario())
        history = session.history()
        assert [e.turn_index for e in history] == [0]
        assert [e.turn_index for e in history] == [0]

        session.advance()
        await session.submit_answer(1, "Can we move it?")
        entries = list(history)
        assert len(history) == 2
        assert entries[1].confirmed_answer == "Can we move it?"
        assert entries[1].evaluation is not None
    asyncio.run(_run())


def test_new_scenario_orphans_pending_evaluation():
    async def _run():
        evaluator = FakeEvaluator()
        evaluator.gate = asyncio.Event()
        session = ScenarioSession(evaluator)
        session.start(greeting_scenario())
        session.advance()
        task = session.submit_answer(1, "hi there")
        await asyncio.sleep(0)

        session.start(meeting_scenario())
        evaluator.gate.set()
        await asyncio.sleep(0)
        assert task.cancelled()
        assert session.current_turn_index == 0
        assert session.state.confirmed_answers == {}
        assert session.evaluation_status(1) == STATUS_NONE
    asyncio.run(_run())


def test_recorded_answer_is_submitted_after_edit():
    async def _run():
        evaluator = FakeEvaluator()
        session = ScenarioSession(evaluator)
        session.start(greeting_scenario())
        session.advance()

        session.start_recording()
        session.transcription.on_final("hi")
        session.transcription.on_partial("the")
        session.transcription.on_partial("there")
        assert session.transcription.stop() == "hi there"

        with pytest.raises(EmptyAnswer):
            session.confirm_recording("  ")
        assert session.transcription.state == STATE_EDITING

        result = await session.confirm_recording("hi there!")
        assert session.transcription.state == STATE_CONFIRMED
        assert session.confirmed_answer(1) == "hi there!"
        assert session.evaluation(1) == result
    asyncio.run(_run())


def test_advance_resets_transcription():
    async def _run():
        session = ScenarioSession(FakeEvaluator())
        session.start(meeting_scenario())
        session.advance()
        await session.submit_answer(1, "typed answer")
        session.start_recording()
        session.advance()
        assert not session.transcription.is_recording
        session.start_recording()
        assert session.transcription.is_recording
    asyncio.run(_run())
