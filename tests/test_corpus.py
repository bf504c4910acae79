import json
import random

import pytest

from realtalk.corpus import ScenarioCorpus, validate_corpus
from realtalk.errors import InvalidProviderInput
from tools.validate_corpus import validate


def _seed(sid: str, level: str) -> dict:
    return {
        "id": sid,
        "level": level,
        "category": "Scheduling",
        "example": [{"role": "ai", "text": "Hi"}, {"role": "user", "text": "Hello"}],
    }


def test_bundled_corpus_covers_every_level():
    corpus = ScenarioCorpus.load()
    assert {s.level for s in corpus.seeds} == {"beginner", "intermediate", "advanced"}


def test_pool_filters_by_level_and_falls_back():
    corpus = ScenarioCorpus.from_data({"corpus": [_seed("a", "beginner"), _seed("b", "beginner"), _seed("c", "advanced")]})
    assert [s.id for s in corpus.pool("beginner")] == ["a", "b"]
    assert [s.id for s in corpus.pool("intermediate")] == ["a", "b", "c"]
    assert corpus.pick("advanced", random.Random(1)).id == "c"


def test_validate_corpus_reports_problems():
    data = {"corpus": [_seed("a", "beginner"), _seed("a", "expert"), {"id": "", "example": []}]}
    errors = validate_corpus(data)
    assert any("duplicate id" in e for e in errors)
    assert any("level must be" in e for e in errors)
    assert any("example must be" in e for e in errors)
    assert validate_corpus([]) == ["top level must be an object with a 'corpus' list"]
    with pytest.raises(InvalidProviderInput):
        ScenarioCorpus.from_data(data)
    with pytest.raises(InvalidProviderInput):
        ScenarioCorpus.from_data({"corpus": []})


def test_validate_cli(tmp_path, capsys):
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"corpus": [_seed("a", "beginner")]}), encoding="utf-8")
    assert validate(str(good)) == 0
    assert "OK seeds=1" in capsys.readouterr().out

    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")
    assert validate(str(bad)) == 1
    assert "ERROR" in capsys.readouterr().out
