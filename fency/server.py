import asyncio
import logging
import threading

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, ContextTypes, MessageHandler, filters

from .config import Config
from .coordinator import ANSWER_WINDOW, Coordinator
from .generators import AssetCaptcha, DigitCaptcha
from .localization import LocalizationService
from .store import VerificationRegistry
from .transport import Transport, TelegramTransport

logger = logging.getLogger(__name__)

CAPTCHA_FILTER = filters.StatusUpdate.NEW_CHAT_MEMBERS | filters.TEXT


def _cleanup_task(registry: VerificationRegistry, interval: float, stop: threading.Event):
    # a record still present one window past expiry has lost its timeout task
    while not stop.wait(interval):
        removed = registry.sweep(grace=ANSWER_WINDOW)
        if removed:
            logger.info("Swept %d stale captcha record(s)", removed)


def build_coordinator(config: Config, transport: Transport, registry: VerificationRegistry) -> Coordinator:
    generator = AssetCaptcha(config.assets_dir) if config.assets_dir else DigitCaptcha()
    localization = LocalizationService(
        default_language=config.default_language,
        fallback_language="en",
        languages=config.languages,
    )
    logger.info("Supported languages: %s", ", ".join(localization.supported_languages()))
    return Coordinator(
        transport,
        registry,
        generator,
        localization,
        test_command=config.test_command,
    )


def make_handler(coordinator: Coordinator):
    async def on_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        # the coordinator blocks on transport calls; keep it off the event loop
        await asyncio.to_thread(coordinator.handle_update, update)

    return on_message


def build_application(config: Config, registry: VerificationRegistry) -> Application:
    async def post_init(application: Application) -> None:
        transport.bind(asyncio.get_running_loop())

    application = (
        ApplicationBuilder()
        .token(config.token)
        .base_url(f"{config.api_url.rstrip('/')}/bot")
        .concurrent_updates(config.workers)
        .post_init(post_init)
        .build()
    )
    transport = TelegramTransport(application.bot)

    coordinator = build_coordinator(config, transport, registry)
    application.bot_data["coordinator"] = coordinator
    application.add_handler(MessageHandler(CAPTCHA_FILTER, make_handler(coordinator)))
    return application


def run_bot(config: Config) -> None:
    registry = VerificationRegistry()
    application = build_application(config, registry)

    stop = threading.Event()
    th = threading.Thread(target=_cleanup_task, args=(registry, config.sweep_interval, stop), daemon=True)
    th.start()

    logger.info("Starting Telegram bot (workers=%d, poll timeout=%ds)", config.workers, config.poll_timeout)
    try:
        application.run_polling(allowed_updates=["message"], timeout=config.poll_timeout)
    finally:
        stop.set()
        logger.info("Bot stopped")
