from __future__ import annotations
import re
import unicodedata

_QUOTE_MAP = {
    "’": "'",
    "‘": "'",
    "“": "\"",
    "”": "\"",
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

def _nfkc_normalize(s: str) -> str:
    if not s:
        return ""
    s = unicodedata.normalize("NFKC", s)
    for src, dst in _QUOTE_MAP.items():
        s = s.replace(src, dst)
    return s

def norm_text(s: str | None) -> str:
    s = _nfkc_normalize(s or "")
    s = s.strip()
    s = re.sub(r"\s+", " ", s)
    return s

def is_blank(s: str | None) -> bool:
    return not norm_text(s)

def word_key(s: str | None) -> str:
    # identity of a vocabulary term: case-insensitive, whitespace-collapsed
    return norm_text(s).casefold()

def contains_ci(haystack: str | None, needle: str | None) -> bool:
    key = word_key(needle)
    if not key:
        return True
    return key in word_key(haystack)

def join_transcript(left: str, right: str) -> str:
    left = (left or "").strip()
    right = (right or "").strip()
    if not left:
        return right
    if not right:
        return left
    return f"{left} {right}"

def strip_code_fence(raw: str | None) -> str:
    text = (raw or "").strip()
    if text.startswith("```"):
        text = _FENCE_RE.sub("", text).strip()
    return text

def extract_json_object(raw: str | None) -> str:
    """Best-effort isolation of a JSON object from model output.

    Models sometimes wrap JSON in a markdown fence or add a sentence around it.
    """
    text = strip_code_fence(raw)
    if text.startswith("{"):
        return text
    match = _OBJECT_RE.search(text)
    return match.group(0) if match else text
