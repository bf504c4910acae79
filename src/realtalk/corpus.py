from __future__ import annotations
import json
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from .errors import InvalidProviderInput
from .schemas import LEVELS

CORPUS_FILE = "scenario_corpus.json"


@dataclass(frozen=True)
class Seed:
    id: str
    level: str
    category: str
    task_description: str = ""
    mood_suggestion: str = ""
    example: tuple[dict, ...] = ()

    def to_prompt_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level,
            "category": self.category,
            "task_description": self.task_description,
            "mood_suggestion": self.mood_suggestion,
            "example": list(self.example),
        }


def validate_corpus(data: Any) -> list[str]:
    """Return human-readable problems; an empty list means the corpus is usable."""
    errors: list[str] = []
    if not isinstance(data, dict) or not isinstance(data.get("corpus"), list):
        return ["top level must be an object with a 'corpus' list"]
    seen: set[str] = set()
    for i, item in enumerate(data["corpus"]):
        where = f"corpus[{i}]"
        if not isinstance(item, dict):
            errors.append(f"{where}: must be an object")
            continue
        sid = item.get("id")
        if not isinstance(sid, str) or not sid.strip():
            errors.append(f"{where}: id must be a non-empty string")
        elif sid in seen:
            errors.append(f"{where}: duplicate id {sid!r}")
        else:
            seen.add(sid)
        if item.get("level") not in LEVELS:
            errors.append(f"{where}: level must be one of {', '.join(LEVELS)}")
        if not isinstance(item.get("category"), str) or not item["category"].strip():
            errors.append(f"{where}: category must be a non-empty string")
        example = item.get("example")
        if not isinstance(example, list) or not example:
            errors.append(f"{where}: example must be a non-empty list")
            continue
        for j, line in enumerate(example):
            if not isinstance(line, dict) or line.get("role") not in ("ai", "user") or not isinstance(line.get("text"), str):
                errors.append(f"{where}.example[{j}]: needs role ai|user and text")
    return errors


def _seed_from_dict(item: dict) -> Seed:
    return Seed(
        id=item["id"],
        level=item["level"],
        category=item["category"],
        task_description=item.get("task_description") or "",
        mood_suggestion=item.get("mood_suggestion") or "",
        example=tuple(item.get("example") or ()),
    )


class ScenarioCorpus:
    def __init__(self, seeds: Sequence[Seed]):
        if not seeds:
            raise InvalidProviderInput("scenario corpus is empty")
        self.seeds = tuple(seeds)

    @classmethod
    def from_data(cls, data: Any) -> "ScenarioCorpus":
        errors = validate_corpus(data)
        if errors:
            raise InvalidProviderInput("invalid scenario corpus: " + "; ".join(errors[:5]))
        return cls([_seed_from_dict(item) for item in data["corpus"]])

    @classmethod
    def load(cls, path: str | Path | None = None) -> "ScenarioCorpus":
        if path is None:
            raw = Path(__file__).resolve().with_name(CORPUS_FILE).read_text(encoding="utf-8")
        else:
            raw = Path(path).read_text(encoding="utf-8")
        return cls.from_data(json.loads(raw))

    def pool(self, level: str) -> tuple[Seed, ...]:
        # a level without seeds falls back to the whole corpus
        matching = tuple(s for s in self.seeds if s.level == level)
        return matching or self.seeds

    def pick(self, level: str, rng: random.Random | None = None) -> Seed:
        return (rng or random).choice(self.pool(level))
