from __future__ import annotations
import io
import json
import logging
import random
import wave
from typing import Any, AsyncIterator, Awaitable, Optional

from google.genai import errors as genai_errors

from .corpus import ScenarioCorpus
from .errors import (
    InvalidProviderInput,
    MalformedResponse,
    TranscriberPermissionDenied,
    TranscriberTransportError,
    UpstreamError,
    UpstreamUnavailable,
)
from .llm import LLMClient
from .normalize import extract_json_object, is_blank, norm_text
from .schemas import (
    LEVELS,
    Enrichment,
    EvaluationResult,
    Scenario,
    parse_enrichment,
    parse_evaluation,
    parse_scenario,
)
from .transcription import TranscriptEvent

logger = logging.getLogger(__name__)


def decode_json(raw: str, what: str) -> Any:
    text = extract_json_object(raw)
    if not text:
        raise MalformedResponse(f"{what}: empty model output")
    try:
        return json.loads(text)
    except ValueError as exc:
        raise MalformedResponse(f"{what}: output is not JSON ({exc})") from exc


async def call_upstream(awaitable: Awaitable[Any], what: str) -> Any:
    """Await an LLM call, mapping every transport/API failure to UpstreamUnavailable."""
    try:
        return await awaitable
    except UpstreamError:
        raise
    except genai_errors.APIError as exc:
        logger.warning("upstream_error: %s code=%s status=%s", what, exc.code, exc.status)
        raise UpstreamUnavailable(f"{what} failed: {exc.code} {exc.status}") from exc
    except Exception as exc:
        logger.warning("upstream_error: %s error=%s", what, exc)
        raise UpstreamUnavailable(f"{what} failed: {exc}") from exc


def _check_level(level: str) -> str:
    level = (level or "").strip().lower()
    if level not in LEVELS:
        raise InvalidProviderInput(f"level must be one of {', '.join(LEVELS)}")
    return level


class ScenarioProvider:
    """Produces practice scenarios: random (seeded from the corpus) or for a custom topic."""

    def __init__(self, llm: LLMClient, corpus: ScenarioCorpus, *, rng: Optional[random.Random] = None):
        self._llm = llm
        self._corpus = corpus
        self._rng = rng or random.Random()

    async def random_scenario(self, level: str) -> Scenario:
        level = _check_level(level)
        seed = self._corpus.pick(level, self._rng)
        imitation = round(self._rng.random(), 2)
        raw = await call_upstream(
            self._llm.generate_random_scenario(seed=seed.to_prompt_dict(), level=level, imitation=imitation),
            "generate_random_scenario",
        )
        scenario = parse_scenario(decode_json(raw, "scenario"), level=level)
        logger.info("scenario_provider: random level=%s seed_id=%s turns=%s", level, seed.id, len(scenario.turns))
        return scenario

    async def custom_scenario(self, topic: str, level: str) -> Scenario:
        if is_blank(topic):
            raise InvalidProviderInput("topic is required for a custom scenario")
        level = _check_level(level)
        raw = await call_upstream(
            self._llm.generate_custom_scenario(topic=norm_text(topic), level=level),
            "generate_custom_scenario",
        )
        scenario = parse_scenario(decode_json(raw, "scenario"), level=level)
        logger.info("scenario_provider: custom level=%s turns=%s", level, len(scenario.turns))
        return scenario


class LLMEvaluator:
    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def evaluate(
        self,
        *,
        user_text: str,
        reference_text: str,
        user_prompt: str,
        topic: str,
    ) -> EvaluationResult:
        if is_blank(user_text):
            raise InvalidProviderInput("user_text is blank")
        raw = await call_upstream(
            self._llm.evaluate_answer(
                user_text=user_text,
                reference_text=reference_text,
                user_prompt=user_prompt,
                topic=topic,
            ),
            "evaluate_answer",
        )
        return parse_evaluation(decode_json(raw, "evaluation"))


class LLMEnricher:
    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def enrich(self, word: str, context: Optional[str] = None) -> Enrichment:
        if is_blank(word):
            raise InvalidProviderInput("word is blank")
        raw = await call_upstream(
            self._llm.enrich_word(word=norm_text(word), context=context),
            "enrich_word",
        )
        return parse_enrichment(decode_json(raw, "enrichment"))


class LLMTranscriber:
    """One-shot speech transcriber; live streaming capture is not available over the API."""

    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def stream(self) -> AsyncIterator[TranscriptEvent]:
        raise TranscriberTransportError("live capture is not supported by this transcriber")
        yield  # pragma: no cover

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        if not audio:
            raise InvalidProviderInput("audio is empty")
        try:
            text = await self._llm.transcribe_audio(audio=audio, mime_type=mime_type)
        except genai_errors.ClientError as exc:
            if exc.code in (401, 403):
                raise TranscriberPermissionDenied(f"transcription denied: {exc.code} {exc.status}") from exc
            raise TranscriberTransportError(f"transcription failed: {exc.code} {exc.status}") from exc
        except Exception as exc:
            logger.warning("upstream_error: transcribe_audio error=%s", exc)
            raise TranscriberTransportError(f"transcription failed: {exc}") from exc
        return norm_text(text)


SPEECH_SAMPLE_RATE = 24000


def pcm_to_wav(pcm: bytes, *, rate: int = SPEECH_SAMPLE_RATE) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(rate)
        w.writeframes(pcm)
    return buf.getvalue()


class LLMSpeaker:
    """Reads a line aloud; returns a WAV file ready to send as audio."""

    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def synthesize(self, text: str) -> bytes:
        if is_blank(text):
            raise InvalidProviderInput("text is blank")
        pcm = await call_upstream(self._llm.synthesize_speech(text=norm_text(text)), "synthesize_speech")
        if not pcm:
            raise UpstreamUnavailable("synthesize_speech returned no audio")
        return pcm_to_wav(pcm)
