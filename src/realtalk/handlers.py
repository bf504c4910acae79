from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Union

from aiogram import Bot, Dispatcher, F
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import BufferedInputFile, CallbackQuery, Message, User as TgUser
from aiogram.utils.formatting import Bold, Code, Italic, Text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings
from .corpus import ScenarioCorpus
from .errors import (
    EmptyAnswer,
    EvaluationInFlight,
    InvalidProviderInput,
    InvalidScenario,
    PersistenceError,
    RecordingAlreadyActive,
    SessionComplete,
    StateError,
    TranscriberError,
    TranscriberPermissionDenied,
    TurnNotReady,
    UpstreamError,
    ValidationError,
    WrongTurn,
)
from .freetalk import ConversationPartner, FreeTalkSession, LLMConversationPartner
from .i18n import t
from .keyboards import (
    kb_after_answer,
    kb_ai_turn,
    kb_key_phrases,
    kb_lang,
    kb_levels,
    kb_main_menu,
    kb_save_freetalk_word,
    kb_transcript,
    kb_user_turn,
    kb_vocab_filters,
)
from .llm import LLMClient
from .models import SqlVocabularyPersistence, User
from .providers import LLMEnricher, LLMEvaluator, LLMSpeaker, LLMTranscriber, ScenarioProvider
from .schemas import (
    LEVELS,
    SOURCE_FREETALK,
    SOURCE_MANUAL,
    SOURCE_PRACTICE,
    VOCAB_SOURCES,
    AiTurn,
    EvaluationResult,
    FreeTalkReply,
    Scenario,
    UserTurn,
    VocabItem,
)
from .session import Evaluator, ScenarioSession
from .transcription import STATE_EDITING, SpeechTranscriber
from .vocabulary import Enricher, VocabularyStore

logger = logging.getLogger(__name__)

VOCAB_PAGE_SIZE = 30

MODE_IDLE = "idle"
MODE_AWAITING_TOPIC = "awaiting_topic"
MODE_PRACTICE = "practice"
MODE_FREETALK = "freetalk"

Target = Union[Message, CallbackQuery]


class ScenarioSource(Protocol):
    async def random_scenario(self, level: str) -> Scenario:
        ...

    async def custom_scenario(self, topic: str, level: str) -> Scenario:
        ...


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str) -> bytes:
        ...


@dataclass
class Services:
    """External collaborators; any of them may be missing when AI is not configured."""
    scenarios: Optional[ScenarioSource] = None
    evaluator: Optional[Evaluator] = None
    enricher: Optional[Enricher] = None
    transcriber: Optional[SpeechTranscriber] = None
    partner: Optional[ConversationPartner] = None
    speaker: Optional[SpeechSynthesizer] = None


def build_services(settings: Settings) -> Services:
    if not settings.gemini_api_key:
        logger.warning("services: no LLM key configured, AI features disabled")
        return Services()
    llm = LLMClient(settings.gemini_api_key, model=settings.llm_model, tts_model=settings.tts_model)
    return Services(
        scenarios=ScenarioProvider(llm, ScenarioCorpus.load()),
        evaluator=LLMEvaluator(llm),
        enricher=LLMEnricher(llm),
        transcriber=LLMTranscriber(llm),
        partner=LLMConversationPartner(llm),
        speaker=LLMSpeaker(llm),
    )


class _NoEvaluator:
    async def evaluate(self, **kwargs) -> EvaluationResult:
        raise UpstreamError("no evaluator configured")


@dataclass
class ChatContext:
    practice: ScenarioSession
    vocabulary: VocabularyStore
    mode: str = MODE_IDLE
    freetalk: Optional[FreeTalkSession] = None


# ---------------- message builders ----------------
def build_scenario_header(scenario: Scenario, ui_lang: str) -> dict[str, object]:
    parts: list[object] = [Bold(scenario.title)]
    if scenario.description:
        parts.extend(["\n", Italic(scenario.description)])
    if scenario.level:
        parts.extend(["\n", t("level_set", ui_lang), " ", t(f"level_{scenario.level}", ui_lang)])
    return Text(*parts).as_kwargs()


def build_ai_turn_message(turn: AiTurn) -> dict[str, object]:
    parts: list[object] = ["🤖 ", Bold(turn.text_foreign)]
    if turn.text_native:
        parts.extend(["\n", Italic(turn.text_native)])
    return Text(*parts).as_kwargs()


def build_user_turn_message(turn: UserTurn, ui_lang: str) -> dict[str, object]:
    return Text(
        Bold(t("your_turn", ui_lang)),
        "\n",
        turn.prompt_native,
        "\n\n",
        t("type_or_voice", ui_lang),
    ).as_kwargs()


def build_reference_message(turn: UserTurn, ui_lang: str) -> dict[str, object]:
    parts: list[object] = [Bold(t("reference", ui_lang)), "\n", Code(turn.reference.answer)]
    if turn.reference.key_phrases:
        parts.extend(["\n\n", t("key_phrases", ui_lang)])
    return Text(*parts).as_kwargs()


def build_evaluation_message(answer: str, result: EvaluationResult, ui_lang: str) -> dict[str, object]:
    parts: list[object] = [
        Bold(t("your_answer", ui_lang)),
        " ",
        Code(answer),
        "\n\n",
        Bold(t("feedback", ui_lang)),
        "\n",
        result.feedback,
    ]
    if result.alternative_expressions:
        parts.extend(["\n\n", Bold(t("alternatives", ui_lang))])
        for expr in result.alternative_expressions:
            parts.extend(["\n• ", Italic(expr)])
    return Text(*parts).as_kwargs()


def build_freetalk_message(reply: FreeTalkReply, ui_lang: str) -> dict[str, object]:
    parts: list[object] = [reply.reply]
    if reply.correction:
        c = reply.correction
        parts.extend(["\n\n", Bold(t("correction", ui_lang)), " ", Code(c.should_say)])
        if c.explanation:
            parts.extend(["\n", Italic(c.explanation)])
    if reply.new_word:
        w = reply.new_word
        parts.extend(["\n\n", Bold(t("new_word", ui_lang)), " ", Bold(w.word)])
        if w.phonetic:
            parts.extend([" ", w.phonetic])
        if w.native_meaning:
            parts.extend(["\n", w.native_meaning])
        if w.example:
            parts.extend(["\n", Italic(w.example)])
    return Text(*parts).as_kwargs()


def build_vocab_list_message(items: Iterable[VocabItem], ui_lang: str, *, limit: int = VOCAB_PAGE_SIZE) -> dict[str, object]:
    items = list(items)
    if not items:
        return Text(t("vocab_empty", ui_lang)).as_kwargs()
    parts: list[object] = [Bold(f"{t('vocab_header', ui_lang)} ({len(items)})")]
    for item in items[:limit]:
        parts.extend(["\n", Bold(item.word)])
        if item.phonetic:
            parts.extend([" ", item.phonetic])
        if item.native_meaning:
            parts.extend([" - ", item.native_meaning])
    if len(items) > limit:
        parts.extend(["\n…"])
    return Text(*parts).as_kwargs()


def parse_vocab_args(args: str | None) -> tuple[str | None, str | None]:
    """'/vocab practice meet' -> ('practice', 'meet'); unknown first word is a search term."""
    words = (args or "").split()
    source = None
    if words and words[0].lower() in VOCAB_SOURCES:
        source = words.pop(0).lower()
    search = " ".join(words) or None
    return source, search


# ---------------- helpers ----------------
async def _say(target: Target, *parts: object, reply_markup=None) -> Message:
    m = target.message if isinstance(target, CallbackQuery) else target
    return await m.answer(**Text(*parts).as_kwargs(), reply_markup=reply_markup)


async def _send(target: Target, kwargs: dict[str, object], reply_markup=None) -> Message:
    m = target.message if isinstance(target, CallbackQuery) else target
    return await m.answer(**kwargs, reply_markup=reply_markup)


async def _get_or_create_user(s: AsyncSession, tg_user: TgUser, settings: Settings) -> User:
    u = await s.get(User, tg_user.id)
    if u:
        return u
    u = User(
        id=tg_user.id,
        username=tg_user.username,
        first_name=tg_user.first_name,
        ui_lang=settings.ui_default_lang,
        level=settings.default_level,
    )
    s.add(u)
    await s.commit()
    return u


async def _download_voice(bot: Bot, file_id: str) -> bytes:
    file = await bot.get_file(file_id)
    buf = await bot.download_file(file.file_path)
    return buf.read() if buf is not None else b""


def register_handlers(
    dp: Dispatcher,
    *,
    settings: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    services: Services | None = None,
):
    services = services if services is not None else build_services(settings)
    contexts: dict[int, ChatContext] = {}

    async def _context(user_id: int) -> ChatContext:
        ctx = contexts.get(user_id)
        if ctx is None:
            ctx = ChatContext(
                practice=ScenarioSession(
                    services.evaluator or _NoEvaluator(),
                    services.transcriber,
                    max_restarts=settings.transcription_max_restarts,
                ),
                vocabulary=VocabularyStore(SqlVocabularyPersistence(sessionmaker, user_id)),
            )
            contexts[user_id] = ctx
        if not ctx.vocabulary.loaded:
            try:
                await ctx.vocabulary.load()
            except PersistenceError as exc:
                # the store stays unloaded and refuses writes; practice goes on without it
                logger.warning("bot_event: vocabulary_load_failed user_id=%s error=%s", user_id, exc)
        return ctx

    async def _profile(tg_user: TgUser) -> tuple[str, str]:
        async with sessionmaker() as s:
            user = await _get_or_create_user(s, tg_user, settings)
            return user.ui_lang, user.level

    async def _show_menu(target: Target, lang: str) -> None:
        await _say(target, t("use_menu", lang), reply_markup=kb_main_menu(lang))

    # ---------------- scenario flow ----------------
    async def _play_until_user_turn(target: Target, ctx: ChatContext, lang: str) -> None:
        session = ctx.practice
        while True:
            turn = session.current_turn()
            idx = session.current_turn_index
            if isinstance(turn, UserTurn):
                await _send(target, build_user_turn_message(turn, lang), kb_user_turn(idx, lang))
                return
            await _send(target, build_ai_turn_message(turn), kb_ai_turn(idx, lang) if services.speaker else None)
            if session.is_last_turn:
                await _finish_scenario(target, ctx, lang)
                return
            session.advance()

    async def _finish_scenario(target: Target, ctx: ChatContext, lang: str) -> None:
        ctx.mode = MODE_IDLE
        logger.info("bot_event: scenario_complete title=%r", ctx.practice.scenario.title)
        await _say(target, t("scenario_complete", lang), reply_markup=kb_main_menu(lang))

    async def _start_scenario(target: Target, user_id: int, *, topic: str | None = None) -> None:
        lang, level = await _profile(target.from_user)
        ctx = await _context(user_id)
        if services.scenarios is None:
            await _say(target, t("ai_unavailable", lang))
            return
        await _say(target, t("generating", lang))
        try:
            if topic is None:
                scenario = await services.scenarios.random_scenario(level)
            else:
                scenario = await services.scenarios.custom_scenario(topic, level)
            ctx.practice.start(scenario)
        except InvalidProviderInput:
            ctx.mode = MODE_AWAITING_TOPIC
            await _say(target, t("ask_topic", lang))
            return
        except (UpstreamError, InvalidScenario) as exc:
            logger.warning("bot_event: scenario_failed user_id=%s error=%s", user_id, exc)
            await _say(target, t("upstream_failed", lang), reply_markup=kb_main_menu(lang))
            return
        ctx.mode = MODE_PRACTICE
        logger.info(
            "bot_event: scenario_started user_id=%s custom=%s level=%s",
            user_id,
            topic is not None,
            level,
        )
        await _send(target, build_scenario_header(scenario, lang))
        await _play_until_user_turn(target, ctx, lang)

    async def _evaluate(target: Target, ctx: ChatContext, lang: str, submit) -> None:
        session = ctx.practice
        idx = session.current_turn_index
        try:
            task = submit()
        except EmptyAnswer:
            await _say(target, t("empty_answer", lang))
            return
        except EvaluationInFlight:
            await _say(target, t("evaluation_pending", lang))
            return
        except WrongTurn:
            await _show_menu(target, lang)
            return
        answer = session.confirmed_answer(idx) or ""
        await _say(target, t("evaluating", lang))
        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # the scenario was replaced while this answer was being judged
            logger.info("bot_event: evaluation_dropped turn=%s", idx)
            return
        except UpstreamError as exc:
            logger.warning("bot_event: evaluation_failed turn=%s error=%s", idx, exc)
            await _say(target, t("evaluation_failed", lang), reply_markup=kb_after_answer(idx, lang))
            return
        if session.confirmed_answer(idx) != answer:
            # superseded by a newer answer; that one reports its own result
            return
        await _send(target, build_evaluation_message(answer, result, lang), kb_after_answer(idx, lang))

    async def _answer_practice(m: Message, ctx: ChatContext, lang: str, text: str) -> None:
        session = ctx.practice
        if session.transcription.state == STATE_EDITING:
            # typed text replaces the transcript
            await _evaluate(m, ctx, lang, lambda: session.confirm_recording(text))
            return
        await _evaluate(m, ctx, lang, lambda: session.submit_answer(session.current_turn_index, text))

    # ---------------- commands ----------------
    @dp.message(CommandStart())
    async def on_start(m: Message):
        lang, _ = await _profile(m.from_user)
        await _say(m, t("welcome", lang), "\n\n", t("choose_lang", lang), reply_markup=kb_lang())

    @dp.message(Command(commands=["menu", "stop"]))
    async def on_menu(m: Message):
        lang, _ = await _profile(m.from_user)
        ctx = await _context(m.from_user.id)
        if ctx.mode == MODE_FREETALK:
            ctx.freetalk = None
            await _say(m, t("freetalk_stopped", lang))
        ctx.mode = MODE_IDLE
        await _show_menu(m, lang)

    @dp.message(Command("level"))
    async def on_level_cmd(m: Message):
        lang, level = await _profile(m.from_user)
        await _say(m, t("choose_level", lang), reply_markup=kb_levels(lang, level))

    @dp.message(Command("lang"))
    async def on_lang_cmd(m: Message):
        lang, _ = await _profile(m.from_user)
        await _say(m, t("choose_lang", lang), reply_markup=kb_lang())

    @dp.message(Command("vocab"))
    async def on_vocab_cmd(m: Message, command: CommandObject):
        lang, _ = await _profile(m.from_user)
        ctx = await _context(m.from_user.id)
        if not ctx.vocabulary.loaded:
            await _say(m, t("vocab_unavailable", lang))
            return
        source, search = parse_vocab_args(command.args)
        await _send(m, build_vocab_list_message(ctx.vocabulary.list(source, search), lang), kb_vocab_filters(lang))

    @dp.message(Command("vocab_clear"))
    async def on_vocab_clear(m: Message):
        lang, _ = await _profile(m.from_user)
        ctx = await _context(m.from_user.id)
        try:
            await ctx.vocabulary.clear()
        except UpstreamError:
            logger.exception("bot_event: vocab_clear_failed user_id=%s", m.from_user.id)
            await _say(m, t("save_failed", lang))
            return
        await _say(m, t("vocab_cleared", lang))

    @dp.message(Command("save"))
    async def on_save_cmd(m: Message, command: CommandObject):
        lang, _ = await _profile(m.from_user)
        word = (command.args or "").strip()
        if not word:
            await _say(m, t("save_usage", lang))
            return
        ctx = await _context(m.from_user.id)
        try:
            added = await ctx.vocabulary.add_enriched(word, services.enricher, source=SOURCE_MANUAL)
        except UpstreamError as exc:
            logger.warning("bot_event: save_failed user_id=%s error=%s", m.from_user.id, exc)
            await _say(m, t("save_failed", lang))
            return
        key = "saved" if added else "already_saved"
        await _say(m, t(key, lang), " ", Bold(word))

    # ---------------- menu callbacks ----------------
    @dp.callback_query(F.data.startswith("lang:"))
    async def on_lang(c: CallbackQuery):
        lang = c.data.split(":", 1)[1]
        if lang not in ("zh", "en"):
            await c.answer()
            return
        async with sessionmaker() as s:
            user = await _get_or_create_user(s, c.from_user, settings)
            user.ui_lang = lang
            await s.commit()
        await _say(c, t("lang_set", lang), reply_markup=kb_main_menu(lang))
        await c.answer()

    @dp.callback_query(F.data == "level_menu")
    async def on_level_menu(c: CallbackQuery):
        lang, level = await _profile(c.from_user)
        await _say(c, t("choose_level", lang), reply_markup=kb_levels(lang, level))
        await c.answer()

    @dp.callback_query(F.data.startswith("level:"))
    async def on_level(c: CallbackQuery):
        level = c.data.split(":", 1)[1]
        if level not in LEVELS:
            await c.answer()
            return
        async with sessionmaker() as s:
            user = await _get_or_create_user(s, c.from_user, settings)
            user.level = level
            await s.commit()
            lang = user.ui_lang
        await _say(c, t("level_set", lang), " ", t(f"level_{level}", lang), reply_markup=kb_main_menu(lang))
        await c.answer()

    @dp.callback_query(F.data == "mode:random")
    async def on_mode_random(c: CallbackQuery):
        await c.answer()
        await _start_scenario(c, c.from_user.id)

    @dp.callback_query(F.data == "mode:custom")
    async def on_mode_custom(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        ctx.mode = MODE_AWAITING_TOPIC
        await _say(c, t("ask_topic", lang))
        await c.answer()

    @dp.callback_query(F.data == "mode:freetalk")
    async def on_mode_freetalk(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        if services.partner is None:
            await _say(c, t("ai_unavailable", lang))
            await c.answer()
            return
        ctx = await _context(c.from_user.id)
        ctx.freetalk = FreeTalkSession(services.partner)
        ctx.mode = MODE_FREETALK
        logger.info("bot_event: freetalk_started user_id=%s", c.from_user.id)
        await _say(c, t("freetalk_start", lang))
        await c.answer()

    @dp.callback_query(F.data.startswith("vocab"))
    async def on_vocab(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        if not ctx.vocabulary.loaded:
            await c.answer(t("vocab_unavailable", lang), show_alert=True)
            return
        source = c.data.split(":", 1)[1] if ":" in c.data else None
        try:
            items = ctx.vocabulary.list(source)
        except ValidationError:
            await c.answer()
            return
        await _send(c, build_vocab_list_message(items, lang), kb_vocab_filters(lang))
        await c.answer()

    # ---------------- practice callbacks ----------------
    @dp.callback_query(F.data.startswith("ref:"))
    async def on_reference(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        session = ctx.practice
        if not session.started:
            await c.answer(t("no_session", lang))
            return
        try:
            turn = session.reveal_reference(int(c.data.split(":", 1)[1]))
        except (ValueError, WrongTurn):
            turn = None
        if turn is None:
            await c.answer()
            return
        idx = int(c.data.split(":", 1)[1])
        phrases = turn.reference.key_phrases
        markup = None
        if phrases:
            markup = kb_key_phrases(idx, phrases, [ctx.vocabulary.is_saved(p) for p in phrases])
        await _send(c, build_reference_message(turn, lang), markup)
        await c.answer()

    @dp.callback_query(F.data.startswith("save:"))
    async def on_save_phrase(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        session = ctx.practice
        try:
            _, idx_str, k_str = c.data.split(":", 2)
            idx, k = int(idx_str), int(k_str)
            turn = session.turn(idx)
            phrase = turn.reference.key_phrases[k]
        except (ValueError, IndexError, AttributeError, StateError, ValidationError):
            await c.answer()
            return
        store = ctx.vocabulary
        try:
            if store.is_saved(phrase):
                await store.remove(phrase)
                note = t("removed", lang)
            else:
                await store.add_enriched(
                    phrase,
                    services.enricher,
                    source=SOURCE_PRACTICE,
                    context=turn.reference.answer,
                )
                note = t("saved", lang)
        except UpstreamError as exc:
            logger.warning("bot_event: save_failed user_id=%s error=%s", c.from_user.id, exc)
            await c.answer(t("save_failed", lang), show_alert=True)
            return
        phrases = turn.reference.key_phrases
        await c.message.edit_reply_markup(
            reply_markup=kb_key_phrases(idx, phrases, [store.is_saved(p) for p in phrases])
        )
        await c.answer(f"{note} {phrase}")

    @dp.callback_query(F.data.startswith("next:"))
    async def on_next(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        session = ctx.practice
        if not session.started or ctx.mode != MODE_PRACTICE:
            await c.answer()
            return
        try:
            idx = int(c.data.split(":", 1)[1])
        except ValueError:
            await c.answer()
            return
        if idx != session.current_turn_index:
            # stale button
            await c.answer()
            return
        try:
            session.advance()
        except TurnNotReady:
            await c.answer(t("answer_first", lang), show_alert=True)
            return
        except SessionComplete:
            await c.answer()
            await _finish_scenario(c, ctx, lang)
            return
        await c.answer()
        await _play_until_user_turn(c, ctx, lang)

    @dp.callback_query(F.data.startswith("say:"))
    async def on_say(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        session = ctx.practice
        if services.speaker is None:
            await c.answer(t("ai_unavailable", lang), show_alert=True)
            return
        try:
            idx = int(c.data.split(":", 1)[1])
            turn = session.turn(idx)
        except (ValueError, StateError, ValidationError):
            await c.answer()
            return
        if not isinstance(turn, AiTurn) or idx > session.current_turn_index:
            await c.answer()
            return
        await c.answer()
        try:
            audio = await services.speaker.synthesize(turn.text_foreign)
        except UpstreamError as exc:
            logger.warning("bot_event: speech_failed user_id=%s error=%s", c.from_user.id, exc)
            await _say(c, t("speech_failed", lang))
            return
        logger.info("bot_event: speech_sent user_id=%s turn=%s audio_bytes=%s", c.from_user.id, idx, len(audio))
        await c.message.answer_audio(
            BufferedInputFile(audio, filename=f"turn-{idx}.wav"),
            title=turn.text_foreign[:64],
        )

    # ---------------- voice ----------------
    @dp.message(F.voice)
    async def on_voice(m: Message):
        lang, _ = await _profile(m.from_user)
        ctx = await _context(m.from_user.id)
        session = ctx.practice
        if ctx.mode != MODE_PRACTICE or not isinstance(session.current_turn(), UserTurn):
            await _show_menu(m, lang)
            return
        if services.transcriber is None:
            await _say(m, t("ai_unavailable", lang))
            return
        if session.transcription.is_recording:
            await _say(m, t("still_transcribing", lang))
            return
        if session.transcription.state == STATE_EDITING:
            # a new voice note re-records
            session.transcription.cancel()
        await _say(m, t("transcribing", lang))
        audio = await _download_voice(m.bot, m.voice.file_id)
        try:
            text = await session.record_once(audio, m.voice.mime_type or "audio/ogg")
        except RecordingAlreadyActive:
            # another voice note got in while this one was downloading
            await _say(m, t("still_transcribing", lang))
            return
        except TranscriberPermissionDenied:
            await _say(m, t("mic_denied", lang))
            return
        except TranscriberError as exc:
            logger.warning("bot_event: transcription_failed user_id=%s error=%s", m.from_user.id, exc)
            if session.transcription.state == STATE_EDITING and not session.transcription.editable_text:
                session.transcription.cancel()
            await _say(m, t("transcribe_failed", lang))
            return
        if not text:
            if session.transcription.state != STATE_EDITING:
                # the scenario was replaced while this note was being transcribed
                return
            session.transcription.cancel()
            await _say(m, t("nothing_heard", lang))
            return
        await _say(m, t("transcript", lang), "\n\n", Code(text), reply_markup=kb_transcript(lang))

    @dp.callback_query(F.data == "voice:confirm")
    async def on_voice_confirm(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        session = ctx.practice
        if not session.started or session.transcription.state != STATE_EDITING:
            await c.answer()
            return
        await c.answer()
        await _evaluate(c, ctx, lang, session.confirm_recording)

    @dp.callback_query(F.data == "voice:again")
    async def on_voice_again(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        if ctx.practice.transcription.state == STATE_EDITING:
            ctx.practice.transcription.cancel()
        await _say(c, t("rerecord_hint", lang))
        await c.answer()

    # ---------------- free talk ----------------
    @dp.callback_query(F.data == "ftsave")
    async def on_freetalk_save(c: CallbackQuery):
        lang, _ = await _profile(c.from_user)
        ctx = await _context(c.from_user.id)
        reply = ctx.freetalk.last_reply if ctx.freetalk else None
        if reply is None or reply.new_word is None:
            await c.answer()
            return
        w = reply.new_word
        item = VocabItem(
            word=w.word,
            phonetic=w.phonetic,
            native_meaning=w.native_meaning,
            example=w.example,
            source=SOURCE_FREETALK,
        )
        try:
            added = await ctx.vocabulary.add(item)
        except UpstreamError as exc:
            logger.warning("bot_event: save_failed user_id=%s error=%s", c.from_user.id, exc)
            await c.answer(t("save_failed", lang), show_alert=True)
            return
        await c.answer(f"{t('saved' if added else 'already_saved', lang)} {w.word}")

    # ---------------- free text ----------------
    @dp.message(F.text)
    async def on_text(m: Message):
        text = m.text or ""
        lang, _ = await _profile(m.from_user)
        ctx = await _context(m.from_user.id)
        if text.startswith("/"):
            await _show_menu(m, lang)
            return

        if ctx.mode == MODE_AWAITING_TOPIC:
            await _start_scenario(m, m.from_user.id, topic=text)
            return

        if ctx.mode == MODE_FREETALK and ctx.freetalk is not None:
            try:
                reply = await ctx.freetalk.send(text)
            except EmptyAnswer:
                await _say(m, t("empty_answer", lang))
                return
            except UpstreamError as exc:
                logger.warning("bot_event: freetalk_failed user_id=%s error=%s", m.from_user.id, exc)
                await _say(m, t("upstream_failed", lang))
                return
            markup = kb_save_freetalk_word(lang) if reply.new_word else None
            await _send(m, build_freetalk_message(reply, lang), markup)
            return

        if ctx.mode == MODE_PRACTICE and ctx.practice.started:
            await _answer_practice(m, ctx, lang, text)
            return

        await _show_menu(m, lang)
