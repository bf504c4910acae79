import asyncio
import logging
from aiogram import Bot, Dispatcher
from aiogram.types import BotCommand
from .config import load_settings
from .db import ensure_sqlite_schema, make_engine, make_sessionmaker
from .handlers import register_handlers

BOT_COMMANDS = [
    BotCommand(command="start", description="Start / choose language"),
    BotCommand(command="menu", description="Main menu"),
    BotCommand(command="level", description="Choose level"),
    BotCommand(command="vocab", description="Vocabulary: /vocab [practice|freetalk|manual] [search]"),
    BotCommand(command="save", description="Save a word: /save <word>"),
    BotCommand(command="vocab_clear", description="Clear vocabulary"),
    BotCommand(command="stop", description="End free talk"),
]

async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings()
    bot = Bot(settings.bot_token)
    engine = make_engine(settings)
    try:
        if settings.database_url.startswith("sqlite"):
            await ensure_sqlite_schema(engine)
        sessionmaker = make_sessionmaker(engine)

        dp = Dispatcher()
        register_handlers(dp, settings=settings, sessionmaker=sessionmaker)

        await bot.set_my_commands(BOT_COMMANDS)
        await dp.start_polling(bot)
    except Exception:
        logging.getLogger(__name__).exception("bot_run_failed")
        raise
    finally:
        await bot.session.close()
        await engine.dispose()

if __name__ == "__main__":
    asyncio.run(main())
