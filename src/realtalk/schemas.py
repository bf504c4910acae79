from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Any, Union

from .errors import MalformedResponse

UTC = dt.timezone.utc
def utcnow() -> dt.datetime:
    return dt.datetime.now(tz=UTC)

LEVELS = ("beginner", "intermediate", "advanced")

# vocabulary sources: scenario practice, free talk, typed by hand
SOURCE_PRACTICE = "practice"
SOURCE_FREETALK = "freetalk"
SOURCE_MANUAL = "manual"
VOCAB_SOURCES = (SOURCE_PRACTICE, SOURCE_FREETALK, SOURCE_MANUAL)


@dataclass(frozen=True)
class AiTurn:
    text_foreign: str
    text_native: str

    is_user = False


@dataclass(frozen=True)
class Reference:
    answer: str
    key_phrases: tuple[str, ...] = ()


@dataclass(frozen=True)
class UserTurn:
    prompt_native: str
    reference: Reference

    is_user = True


Turn = Union[AiTurn, UserTurn]


@dataclass(frozen=True)
class Scenario:
    title: str
    description: str
    turns: tuple[Turn, ...]
    level: str | None = None


@dataclass(frozen=True)
class EvaluationResult:
    feedback: str
    alternative_expressions: tuple[str, ...] = ()


@dataclass(frozen=True)
class Enrichment:
    phonetic: str
    native_meaning: str
    example: str


@dataclass(frozen=True)
class VocabItem:
    word: str
    phonetic: str = ""
    native_meaning: str = ""
    foreign_explanation: str = ""
    example: str = ""
    added_at: dt.datetime = field(default_factory=utcnow)
    source: str = SOURCE_MANUAL

    def with_enrichment(self, enrichment: Enrichment) -> "VocabItem":
        return replace(
            self,
            phonetic=enrichment.phonetic or self.phonetic,
            native_meaning=enrichment.native_meaning or self.native_meaning,
            example=enrichment.example or self.example,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "word": self.word,
            "phonetic": self.phonetic,
            "native_meaning": self.native_meaning,
            "foreign_explanation": self.foreign_explanation,
            "example": self.example,
            "added_at": self.added_at.isoformat(),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "VocabItem":
        added_at = dt.datetime.fromisoformat(str(raw["added_at"]))
        if added_at.tzinfo is None:
            added_at = added_at.replace(tzinfo=UTC)
        source = raw.get("source") or SOURCE_MANUAL
        if source not in VOCAB_SOURCES:
            source = SOURCE_MANUAL
        return cls(
            word=str(raw["word"]),
            phonetic=str(raw.get("phonetic") or ""),
            native_meaning=str(raw.get("native_meaning") or ""),
            foreign_explanation=str(raw.get("foreign_explanation") or ""),
            example=str(raw.get("example") or ""),
            added_at=added_at,
            source=source,
        )


@dataclass(frozen=True)
class Correction:
    user_said: str
    should_say: str
    explanation: str


@dataclass(frozen=True)
class WordSuggestion:
    word: str
    phonetic: str = ""
    native_meaning: str = ""
    example: str = ""


@dataclass(frozen=True)
class FreeTalkReply:
    reply: str
    correction: Correction | None = None
    new_word: WordSuggestion | None = None


# ---------------- strict payload parsing ----------------
def _require_object(payload: Any, what: str) -> dict:
    if not isinstance(payload, dict):
        raise MalformedResponse(f"{what} must be an object")
    return payload

def _require_str(obj: dict, key: str, what: str) -> str:
    val = obj.get(key)
    if not isinstance(val, str) or not val.strip():
        raise MalformedResponse(f"{what}.{key} must be a non-empty string")
    return val.strip()

def _optional_str(obj: dict, key: str, what: str) -> str:
    val = obj.get(key)
    if val is None:
        return ""
    if not isinstance(val, str):
        raise MalformedResponse(f"{what}.{key} must be a string when present")
    return val.strip()

def _optional_str_list(obj: dict, key: str, what: str) -> tuple[str, ...]:
    val = obj.get(key)
    if val is None:
        return ()
    if not isinstance(val, list) or not all(isinstance(x, str) for x in val):
        raise MalformedResponse(f"{what}.{key} must be a list of strings when present")
    return tuple(x.strip() for x in val if x.strip())

def _optional_bool(obj: dict, key: str, what: str) -> bool:
    val = obj.get(key)
    if val is None:
        return False
    if not isinstance(val, bool):
        raise MalformedResponse(f"{what}.{key} must be a boolean when present")
    return val

def parse_turn(raw: Any, index: int) -> Turn:
    what = f"messages[{index}]"
    msg = _require_object(raw, what)
    role = msg.get("role")
    if role == "ai":
        return AiTurn(
            text_foreign=_require_str(msg, "english", what),
            text_native=_optional_str(msg, "chinese", what),
        )
    if role == "user":
        ref = _require_object(msg.get("reference"), f"{what}.reference")
        return UserTurn(
            prompt_native=_require_str(msg, "userPrompt", what),
            reference=Reference(
                answer=_require_str(ref, "answer", f"{what}.reference"),
                key_phrases=_optional_str_list(ref, "keyPhrases", f"{what}.reference"),
            ),
        )
    raise MalformedResponse(f"{what}.role must be 'ai' or 'user'")

def parse_scenario(payload: Any, level: str | None = None) -> Scenario:
    obj = _require_object(payload, "scenario")
    messages = obj.get("messages")
    if not isinstance(messages, list):
        raise MalformedResponse("scenario.messages must be a list")
    turns = tuple(parse_turn(m, i) for i, m in enumerate(messages))
    return Scenario(
        title=_require_str(obj, "title", "scenario"),
        description=_optional_str(obj, "scenario", "scenario"),
        turns=turns,
        level=level,
    )

def parse_evaluation(payload: Any) -> EvaluationResult:
    obj = _require_object(payload, "evaluation")
    return EvaluationResult(
        feedback=_require_str(obj, "feedback", "evaluation"),
        alternative_expressions=_optional_str_list(obj, "alternative_expressions", "evaluation"),
    )

def parse_enrichment(payload: Any) -> Enrichment:
    obj = _require_object(payload, "enrichment")
    # englishExplanation is deliberately not read
    return Enrichment(
        phonetic=_optional_str(obj, "phonetic", "enrichment"),
        native_meaning=_require_str(obj, "chinese", "enrichment"),
        example=_optional_str(obj, "example", "enrichment"),
    )

def parse_freetalk_reply(payload: Any) -> FreeTalkReply:
    obj = _require_object(payload, "freetalk")
    correction = None
    raw_corr = obj.get("correction")
    if raw_corr is not None:
        corr = _require_object(raw_corr, "freetalk.correction")
        if _optional_bool(corr, "hasError", "freetalk.correction"):
            correction = Correction(
                user_said=_optional_str(corr, "userSaid", "freetalk.correction"),
                should_say=_require_str(corr, "shouldSay", "freetalk.correction"),
                explanation=_optional_str(corr, "explanation", "freetalk.correction"),
            )
    new_word = None
    raw_vocab = obj.get("vocabulary")
    if raw_vocab is not None:
        vocab = _require_object(raw_vocab, "freetalk.vocabulary")
        if _optional_bool(vocab, "hasNewWord", "freetalk.vocabulary"):
            new_word = WordSuggestion(
                word=_require_str(vocab, "word", "freetalk.vocabulary"),
                phonetic=_optional_str(vocab, "phonetic", "freetalk.vocabulary"),
                native_meaning=_optional_str(vocab, "chinese", "freetalk.vocabulary"),
                example=_optional_str(vocab, "example", "freetalk.vocabulary"),
            )
    return FreeTalkReply(
        reply=_require_str(obj, "reply", "freetalk"),
        correction=correction,
        new_word=new_word,
    )
