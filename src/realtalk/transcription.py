from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterator, Protocol

from .errors import (
    EmptyAnswer,
    RecordingAlreadyActive,
    RecordingNotActive,
    StateError,
    TranscriberError,
    TranscriberPermissionDenied,
)
from .normalize import is_blank, join_transcript, norm_text

logger = logging.getLogger(__name__)

# idle -> recording -> editing -> (confirmed | cancelled)
STATE_IDLE = "idle"
STATE_RECORDING = "recording"
STATE_EDITING = "editing"
STATE_CONFIRMED = "confirmed"
STATE_CANCELLED = "cancelled"

_STARTABLE = (STATE_IDLE, STATE_CONFIRMED, STATE_CANCELLED)


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool


@dataclass
class TranscriptionBuffer:
    finalized_text: str = ""
    pending_partial_text: str = ""

    def merged(self) -> str:
        return join_transcript(self.finalized_text, self.pending_partial_text)


class SpeechTranscriber(Protocol):
    def stream(self) -> AsyncIterator[TranscriptEvent]:
        """Live capture: partial/final events until the capture ends."""
        ...

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        """One-shot mode: a complete audio blob in, a single transcript out."""
        ...


class TranscriptionSession:
    """One speech capture at a time, followed by a human edit step."""

    def __init__(self, transcriber: SpeechTranscriber | None = None, *, max_restarts: int = 3) -> None:
        self._transcriber = transcriber
        self._max_restarts = max(0, max_restarts)
        self._state = STATE_IDLE
        self._buffer: TranscriptionBuffer | None = None
        self._editable = ""
        self._events: list[TranscriptEvent] = []
        self._generation = 0
        self._pump: asyncio.Task | None = None
        self.restarts = 0
        self.last_error: TranscriberError | None = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == STATE_RECORDING

    @property
    def buffer(self) -> TranscriptionBuffer | None:
        return self._buffer

    @property
    def editable_text(self) -> str:
        if self._state != STATE_EDITING:
            return ""
        return self._editable

    def events(self) -> Iterator[TranscriptEvent]:
        """Events of the current (or last) recording, in arrival order."""
        return iter(tuple(self._events))

    # ---------------- lifecycle ----------------
    def start(self, *, live: bool = True) -> None:
        if self._state == STATE_RECORDING:
            raise RecordingAlreadyActive("a recording is already active")
        if self._state not in _STARTABLE:
            raise StateError(f"cannot start recording from {self._state}")
        self._generation += 1
        self._state = STATE_RECORDING
        self._buffer = TranscriptionBuffer()
        self._editable = ""
        self._events = []
        self.restarts = 0
        self.last_error = None
        logger.info("transcription: start generation=%s live=%s", self._generation, live)
        if live and self._transcriber is not None:
            self._pump = asyncio.ensure_future(self._run_stream(self._generation))

    def apply(self, event: TranscriptEvent) -> None:
        if self._state != STATE_RECORDING or self._buffer is None:
            # late event from an orphaned capture
            return
        self._events.append(event)
        if event.is_final:
            self._buffer.finalized_text = join_transcript(self._buffer.finalized_text, event.text)
            self._buffer.pending_partial_text = ""
        else:
            self._buffer.pending_partial_text = (event.text or "").strip()

    def on_partial(self, text: str) -> None:
        self.apply(TranscriptEvent(text=text, is_final=False))

    def on_final(self, text: str) -> None:
        self.apply(TranscriptEvent(text=text, is_final=True))

    def stop(self) -> str:
        if self._state != STATE_RECORDING or self._buffer is None:
            raise RecordingNotActive(f"not recording (state={self._state})")
        merged = self._buffer.merged()
        self._buffer = None
        self._editable = merged
        self._state = STATE_EDITING
        self._cancel_pump()
        logger.info("transcription: stop generation=%s text_len=%s", self._generation, len(merged))
        return merged

    def edit(self, text: str) -> None:
        if self._state != STATE_EDITING:
            raise StateError(f"nothing to edit (state={self._state})")
        self._editable = text or ""

    def confirm(self, edited_text: str | None = None) -> str:
        if self._state != STATE_EDITING:
            raise StateError(f"nothing to confirm (state={self._state})")
        text = self._editable if edited_text is None else edited_text
        if is_blank(text):
            raise EmptyAnswer()
        self._state = STATE_CONFIRMED
        self._editable = ""
        return norm_text(text)

    def cancel(self) -> None:
        if self._state not in (STATE_EDITING, STATE_RECORDING):
            raise StateError(f"nothing to cancel (state={self._state})")
        self._discard()
        self._state = STATE_IDLE
        logger.info("transcription: cancelled generation=%s", self._generation)

    def reset(self) -> None:
        """Drop whatever is in progress; used when the owning session ends."""
        self._discard()
        self._state = STATE_IDLE

    def fail(self, error: TranscriberError) -> None:
        """Apply a failure reported by the transcriber while recording."""
        if self._state != STATE_RECORDING:
            return
        self.last_error = error
        if isinstance(error, TranscriberPermissionDenied):
            logger.warning("transcription: permission denied generation=%s", self._generation)
            self._discard()
            return
        logger.warning("transcription: transport failure generation=%s error=%s", self._generation, error)
        self.stop()

    def _discard(self) -> None:
        self._cancel_pump()
        self._buffer = None
        self._editable = ""
        self._state = STATE_CANCELLED

    def _cancel_pump(self) -> None:
        pump, self._pump = self._pump, None
        if pump is not None and pump is not asyncio.current_task() and not pump.done():
            pump.cancel()

    # ---------------- transcriber drivers ----------------
    async def capture_once(self, audio: bytes, mime_type: str) -> str:
        """Transcribe a complete recording and move to the edit step."""
        if self._transcriber is None:
            raise StateError("no speech transcriber configured")
        self.start(live=False)
        generation = self._generation
        try:
            text = await self._transcriber.transcribe(audio, mime_type)
        except TranscriberError as exc:
            if generation == self._generation:
                self.fail(exc)
            raise
        except Exception as exc:
            if generation == self._generation:
                err = TranscriberError(f"transcriber failed: {exc}")
                self.fail(err)
                raise err from exc
            raise
        if generation != self._generation or self._state != STATE_RECORDING:
            return ""
        self.on_final(text)
        return self.stop()

    async def _run_stream(self, generation: int) -> None:
        assert self._transcriber is not None
        while True:
            try:
                async for event in self._transcriber.stream():
                    if generation != self._generation:
                        return
                    self.apply(event)
            except asyncio.CancelledError:
                raise
            except TranscriberError as exc:
                if generation == self._generation:
                    self.fail(exc)
                return
            except Exception as exc:
                if generation == self._generation:
                    self.fail(TranscriberError(f"stream failed: {exc}"))
                return
            # capture ended on its own while still logically recording
            if generation != self._generation or self._state != STATE_RECORDING:
                return
            if self.restarts >= self._max_restarts:
                logger.warning(
                    "transcription: restart limit reached generation=%s restarts=%s",
                    generation,
                    self.restarts,
                )
                self.stop()
                return
            self.restarts += 1
            logger.info("transcription: restarting capture generation=%s attempt=%s", generation, self.restarts)
