import datetime as dt

import pytest

from realtalk.errors import MalformedResponse, UpstreamError
from realtalk.schemas import (
    SOURCE_MANUAL,
    SOURCE_PRACTICE,
    AiTurn,
    Enrichment,
    UserTurn,
    VocabItem,
    parse_enrichment,
    parse_evaluation,
    parse_freetalk_reply,
    parse_scenario,
)

SCENARIO_PAYLOAD = {
    "title": "婉拒同事",
    "level": "进阶",
    "scenario": "A colleague asks for help while you are busy.",
    "messages": [
        {"role": "ai", "english": "Got a minute?", "chinese": "有空吗？"},
        {
            "role": "user",
            "userPrompt": "我很乐意帮忙，但我这周忙爆了",
            "reference": {"answer": "I'd love to help, but I'm swamped this week", "keyPhrases": ["swamped", " "]},
        },
    ],
}


def test_parse_scenario():
    scenario = parse_scenario(SCENARIO_PAYLOAD, level="intermediate")
    assert scenario.title == "婉拒同事"
    assert scenario.description.startswith("A colleague")
    assert scenario.level == "intermediate"
    ai, user = scenario.turns
    assert isinstance(ai, AiTurn) and not ai.is_user
    assert ai.text_native == "有空吗？"
    assert isinstance(user, UserTurn) and user.is_user
    assert user.reference.key_phrases == ("swamped",)


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"title": "x"},
        {"title": "", "messages": []},
        {"title": "x", "messages": [{"role": "narrator", "english": "hi"}]},
        {"title": "x", "messages": [{"role": "ai"}]},
        {"title": "x", "messages": [{"role": "user", "userPrompt": "说", "reference": "Hi"}]},
        {"title": "x", "messages": [{"role": "user", "userPrompt": "说", "reference": {"answer": "Hi", "keyPhrases": "Hi"}}]},
    ],
)
def test_parse_scenario_rejects_malformed_payloads(payload):
    with pytest.raises(MalformedResponse):
        parse_scenario(payload)


def test_malformed_response_is_upstream_and_retryable():
    assert issubclass(MalformedResponse, UpstreamError)
    assert MalformedResponse("x").retryable


def test_parse_evaluation():
    result = parse_evaluation({"feedback": "太生硬了", "alternative_expressions": ["Double check", "Give it a second look"]})
    assert result.alternative_expressions == ("Double check", "Give it a second look")
    assert parse_evaluation({"feedback": "ok"}).alternative_expressions == ()
    with pytest.raises(MalformedResponse):
        parse_evaluation({"feedback": 3})
    with pytest.raises(MalformedResponse):
        parse_evaluation({"feedback": "ok", "alternative_expressions": [1]})


def test_parse_enrichment_drops_english_explanation():
    enrichment = parse_enrichment(
        {
            "word": "swamped",
            "phonetic": "/swɒmpt/",
            "chinese": "忙得不可开交",
            "englishExplanation": "very busy",
            "example": "I'm swamped this week.",
        }
    )
    assert enrichment == Enrichment("/swɒmpt/", "忙得不可开交", "I'm swamped this week.")
    item = VocabItem(word="swamped", foreign_explanation="").with_enrichment(enrichment)
    assert item.foreign_explanation == ""
    with pytest.raises(MalformedResponse):
        parse_enrichment({"phonetic": "/x/"})


def test_parse_freetalk_reply():
    reply = parse_freetalk_reply(
        {
            "reply": "Sounds fun! What did you do?",
            "correction": {"hasError": True, "userSaid": "I go there yesterday", "shouldSay": "I went there yesterday", "explanation": "过去时"},
            "vocabulary": {"hasNewWord": False},
        }
    )
    assert reply.correction.should_say == "I went there yesterday"
    assert reply.new_word is None

    plain = parse_freetalk_reply({"reply": "Nice.", "correction": {"hasError": False}})
    assert plain.correction is None
    with pytest.raises(MalformedResponse):
        parse_freetalk_reply({"reply": "Hi", "vocabulary": {"hasNewWord": "yes"}})


def test_vocab_item_dict_round_trip():
    item = VocabItem(
        word="circle back",
        phonetic="/ˈsɜːkl bæk/",
        native_meaning="回头再谈",
        added_at=dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt.timezone.utc),
        source=SOURCE_PRACTICE,
    )
    assert VocabItem.from_dict(item.to_dict()) == item

    legacy = VocabItem.from_dict({"word": "x", "added_at": "2024-01-02T03:04:05", "source": "sessionA"})
    assert legacy.added_at.tzinfo is not None
    assert legacy.source == SOURCE_MANUAL
