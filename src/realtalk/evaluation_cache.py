from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from .errors import EvaluationInFlight, UpstreamError, UpstreamUnavailable
from .schemas import EvaluationResult

logger = logging.getLogger(__name__)

# evaluation status per turn index
STATUS_NONE = "none"
STATUS_PENDING = "pending"
STATUS_DONE = "done"
STATUS_FAILED = "failed"


@dataclass
class _Pending:
    token: int
    key: str
    task: asyncio.Task


def _consume_outcome(task: asyncio.Task) -> None:
    # marks the exception as retrieved for fire-and-forget submissions
    if not task.cancelled():
        task.exception()


class EvaluationCache:
    """Per-session map of turn index -> EvaluationResult.

    One writer per key: while a request for a turn is outstanding, an identical
    submission (same key) is coalesced onto the pending task and a different one
    is rejected with EvaluationInFlight. Failures are not cached.
    """

    def __init__(self) -> None:
        self._results: dict[int, EvaluationResult] = {}
        self._pending: dict[int, _Pending] = {}
        self._failures: dict[int, UpstreamError] = {}
        self._token = 0
        self._closed = False

    def get(self, turn_index: int) -> EvaluationResult | None:
        return self._results.get(turn_index)

    def failure(self, turn_index: int) -> UpstreamError | None:
        return self._failures.get(turn_index)

    def status(self, turn_index: int) -> str:
        if turn_index in self._pending:
            return STATUS_PENDING
        if turn_index in self._results:
            return STATUS_DONE
        if turn_index in self._failures:
            return STATUS_FAILED
        return STATUS_NONE

    def pending_task(self, turn_index: int) -> asyncio.Task | None:
        pending = self._pending.get(turn_index)
        return pending.task if pending else None

    def check_available(self, turn_index: int, key: str) -> asyncio.Task | None:
        """Return the task to coalesce onto, None if free, or raise EvaluationInFlight."""
        pending = self._pending.get(turn_index)
        if pending is None:
            return None
        if pending.key == key:
            return pending.task
        raise EvaluationInFlight(turn_index)

    def submit(
        self,
        turn_index: int,
        key: str,
        request: Callable[[], Awaitable[EvaluationResult]],
    ) -> asyncio.Task:
        existing = self.check_available(turn_index, key)
        if existing is not None:
            logger.info("evaluation_cache: coalesced turn=%s", turn_index)
            return existing
        # a fresh request replaces whatever the slot held before
        self._results.pop(turn_index, None)
        self._failures.pop(turn_index, None)
        self._token += 1
        token = self._token
        task = asyncio.ensure_future(self._resolve(turn_index, token, request))
        task.add_done_callback(_consume_outcome)
        self._pending[turn_index] = _Pending(token=token, key=key, task=task)
        logger.info("evaluation_cache: requested turn=%s token=%s", turn_index, token)
        return task

    def _owns(self, turn_index: int, token: int) -> bool:
        pending = self._pending.get(turn_index)
        return not self._closed and pending is not None and pending.token == token

    async def _resolve(
        self,
        turn_index: int,
        token: int,
        request: Callable[[], Awaitable[EvaluationResult]],
    ) -> EvaluationResult:
        try:
            result = await request()
        except asyncio.CancelledError:
            if self._owns(turn_index, token):
                del self._pending[turn_index]
            raise
        except Exception as exc:
            if isinstance(exc, UpstreamError):
                err = exc
            else:
                err = UpstreamUnavailable(f"evaluator failed: {exc}")
                err.__cause__ = exc
            if self._owns(turn_index, token):
                del self._pending[turn_index]
                self._failures[turn_index] = err
                logger.warning("evaluation_cache: failed turn=%s token=%s error=%s", turn_index, token, err)
            else:
                logger.info("evaluation_cache: discarded stale failure turn=%s token=%s", turn_index, token)
            raise err
        if not isinstance(result, EvaluationResult):
            err = UpstreamUnavailable(f"evaluator returned {type(result).__name__}")
            if self._owns(turn_index, token):
                del self._pending[turn_index]
                self._failures[turn_index] = err
            raise err
        if self._owns(turn_index, token):
            del self._pending[turn_index]
            self._results[turn_index] = result
            logger.info("evaluation_cache: resolved turn=%s token=%s", turn_index, token)
        else:
            logger.info("evaluation_cache: discarded stale result turn=%s token=%s", turn_index, token)
        return result

    def close(self) -> None:
        """Abandon every outstanding request; late completions are discarded."""
        self._closed = True
        for pending in list(self._pending.values()):
            pending.task.cancel()
        self._pending.clear()

    def __contains__(self, turn_index: int) -> bool:
        return turn_index in self._results

    def items(self) -> list[tuple[int, EvaluationResult]]:
        return sorted(self._results.items())
