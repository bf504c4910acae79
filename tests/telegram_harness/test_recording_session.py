import asyncio

from aiogram import Bot
from aiogram.types import BufferedInputFile, InlineKeyboardButton, InlineKeyboardMarkup

from tests.telegram_harness.session import VOICE_BYTES, RecordingSession


def _bot(session: RecordingSession) -> Bot:
    return Bot(token="123456:TEST", session=session)


def test_recording_session_keeps_and_edits_reply_markup() -> None:
    async def _run() -> None:
        session = RecordingSession()
        bot = _bot(session)
        markup = InlineKeyboardMarkup(
            inline_keyboard=[[InlineKeyboardButton(text="Reference", callback_data="ref:1")]]
        )

        message = await bot.send_message(chat_id=999, text="Your turn", reply_markup=markup)
        assert message.reply_markup.inline_keyboard[0][0].callback_data == "ref:1"

        starred = InlineKeyboardMarkup(
            inline_keyboard=[[InlineKeyboardButton(text="⭐ Hi there", callback_data="save:1:0")]]
        )
        await bot.edit_message_reply_markup(chat_id=999, message_id=message.message_id, reply_markup=starred)
        stored = session.messages_by_chat[999][-1]
        assert stored.text == "Your turn"
        assert stored.reply_markup.inline_keyboard[0][0].callback_data == "save:1:0"
        assert [name for name, _ in session.calls] == ["SendMessage", "EditMessageReplyMarkup"]

    asyncio.run(_run())


def test_recording_session_serves_voice_files() -> None:
    async def _run() -> None:
        session = RecordingSession()
        bot = _bot(session)
        file = await bot.get_file("voice-1")
        assert file.file_path == "voice/voice-1.oga"
        buf = await bot.download_file(file.file_path)
        assert buf.read() == VOICE_BYTES

    asyncio.run(_run())


def test_recording_session_collects_callback_answers() -> None:
    async def _run() -> None:
        session = RecordingSession()
        bot = _bot(session)
        assert await bot.answer_callback_query("cb-1", text="⭐ Saved: Hi there") is True
        await bot.answer_callback_query("cb-2")
        assert session.callback_texts == ["⭐ Saved: Hi there", ""]

    asyncio.run(_run())


def test_recording_session_keeps_sent_audio() -> None:
    async def _run() -> None:
        session = RecordingSession()
        bot = _bot(session)
        await bot.send_audio(chat_id=999, audio=BufferedInputFile(b"RIFF-hello", filename="turn-0.wav"), title="Hello")
        [audio] = session.audio_by_chat[999]
        assert audio.data == b"RIFF-hello"
        assert audio.filename == "turn-0.wav"
        assert session.messages_by_chat == {}

    asyncio.run(_run())
