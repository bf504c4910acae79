import datetime as dt

from realtalk.handlers import (
    build_evaluation_message,
    build_freetalk_message,
    build_reference_message,
    build_scenario_header,
    build_vocab_list_message,
    parse_vocab_args,
)
from realtalk.schemas import Correction, EvaluationResult, FreeTalkReply, VocabItem, WordSuggestion

from tests.fakes import greeting_scenario, meeting_scenario


def test_parse_vocab_args():
    assert parse_vocab_args(None) == (None, None)
    assert parse_vocab_args("practice") == ("practice", None)
    assert parse_vocab_args("FreeTalk push it") == ("freetalk", "push it")
    assert parse_vocab_args("meeting notes") == (None, "meeting notes")


def test_scenario_header_includes_level_only_when_set():
    plain = build_scenario_header(greeting_scenario(), "en")
    assert plain["text"] == "Greeting\nSay hello to a colleague"
    assert plain["parse_mode"] is None

    leveled = build_scenario_header(meeting_scenario(), "en")
    assert leveled["text"].endswith("Level: Intermediate")


def test_reference_message_uses_entities_not_markup():
    turn = meeting_scenario().turns[1]
    kwargs = build_reference_message(turn, "en")
    assert "Totally get it, but I have a conflict at three." in kwargs["text"]
    assert "*" not in kwargs["text"]
    assert {e.type for e in kwargs["entities"]} >= {"bold", "code"}


def test_evaluation_message_lists_alternatives():
    result = EvaluationResult("Good, but more casual.", ("Hey!", "Hi!"))
    text = build_evaluation_message("Hello", result, "en")["text"]
    assert text.splitlines()[-2:] == ["• Hey!", "• Hi!"]

    bare = build_evaluation_message("Hello", EvaluationResult("ok"), "en")["text"]
    assert "•" not in bare


def test_freetalk_message_shows_correction_and_word():
    reply = FreeTalkReply(
        "Nice plan!",
        correction=Correction("I go to beach", "I'm going to the beach", "Use the present continuous for plans."),
        new_word=WordSuggestion("getaway", "/ˈɡetəweɪ/", "短假", "A weekend getaway."),
    )
    text = build_freetalk_message(reply, "en")["text"]
    assert text.startswith("Nice plan!")
    assert "I'm going to the beach" in text
    assert "getaway /ˈɡetəweɪ/" in text
    assert build_freetalk_message(FreeTalkReply("Only a reply"), "en")["text"] == "Only a reply"


def test_vocab_list_is_truncated():
    at = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
    items = [VocabItem(word=f"w{i}", native_meaning="m", added_at=at) for i in range(3)]
    text = build_vocab_list_message(items, "en", limit=2)["text"]
    assert text.splitlines() == ["Vocabulary (3)", "w0 - m", "w1 - m", "…"]
    assert build_vocab_list_message([], "zh")["text"] == "生词本是空的。"
