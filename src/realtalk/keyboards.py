from __future__ import annotations
from typing import Sequence
from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder
from .i18n import t
from .schemas import LEVELS, VOCAB_SOURCES

def kb_lang() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="中文", callback_data="lang:zh")
    b.button(text="English", callback_data="lang:en")
    b.adjust(2)
    return b.as_markup()

def kb_main_menu(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("menu_random", ui_lang), callback_data="mode:random")
    b.button(text=t("menu_custom", ui_lang), callback_data="mode:custom")
    b.button(text=t("menu_freetalk", ui_lang), callback_data="mode:freetalk")
    b.button(text=t("menu_vocab", ui_lang), callback_data="vocab")
    b.button(text=t("menu_level", ui_lang), callback_data="level_menu")
    b.adjust(2, 1, 2)
    return b.as_markup()

def kb_levels(ui_lang: str, current: str | None = None) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    for level in LEVELS:
        mark = "✅ " if level == current else ""
        b.button(text=mark + t(f"level_{level}", ui_lang), callback_data=f"level:{level}")
    b.adjust(3)
    return b.as_markup()

def kb_ai_turn(turn_index: int, ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("listen", ui_lang), callback_data=f"say:{turn_index}")
    b.adjust(1)
    return b.as_markup()

def kb_user_turn(turn_index: int, ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("show_reference", ui_lang), callback_data=f"ref:{turn_index}")
    b.adjust(1)
    return b.as_markup()

def kb_after_answer(turn_index: int, ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("show_reference", ui_lang), callback_data=f"ref:{turn_index}")
    b.button(text=t("next", ui_lang), callback_data=f"next:{turn_index}")
    b.adjust(2)
    return b.as_markup()

def kb_key_phrases(turn_index: int, phrases: Sequence[str], saved: Sequence[bool]) -> InlineKeyboardMarkup:
    # callback data carries indices only; phrases can exceed the 64-byte limit
    b = InlineKeyboardBuilder()
    for i, (phrase, is_saved) in enumerate(zip(phrases, saved)):
        b.button(text=("⭐ " if is_saved else "☆ ") + phrase, callback_data=f"save:{turn_index}:{i}")
    b.adjust(1)
    return b.as_markup()

def kb_transcript(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("confirm", ui_lang), callback_data="voice:confirm")
    b.button(text=t("rerecord", ui_lang), callback_data="voice:again")
    b.adjust(2)
    return b.as_markup()

def kb_save_freetalk_word(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("save_word", ui_lang), callback_data="ftsave")
    b.adjust(1)
    return b.as_markup()

def kb_vocab_filters(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("vocab_all", ui_lang), callback_data="vocab")
    for source in VOCAB_SOURCES:
        b.button(text=t(f"vocab_{source}", ui_lang), callback_data=f"vocab:{source}")
    b.adjust(4)
    return b.as_markup()
