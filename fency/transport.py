import asyncio
import concurrent.futures
import logging
from typing import Optional, Protocol

from telegram import Bot
from telegram.error import BadRequest, TelegramError

logger = logging.getLogger(__name__)

PARSE_MODE = "MarkdownV2"


class TransportError(Exception):
    def __init__(self, method: str, description: str):
        super().__init__(f"{method}: {description}")
        self.method = method
        self.description = description


class Transport(Protocol):
    def send_photo(self, chat_id: int, photo: bytes, caption: str, parse_mode: Optional[str] = None) -> int: ...

    def send_text(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> int: ...

    def delete_message(self, chat_id: int, message_id: int) -> None: ...

    def ban_member(self, chat_id: int, user_id: int, until: int) -> None: ...


class TelegramTransport:
    """Blocking facade over a python-telegram-bot ``Bot``.

    Calls come from worker threads; each coroutine is submitted to the
    event loop the application runs on, bound with ``bind``.
    """

    def __init__(self, bot: Bot, timeout: float = 30.0):
        self.bot = bot
        self.timeout = timeout
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def _run(self, method: str, coro):
        if self.loop is None:
            coro.close()
            raise TransportError(method, "transport is not bound to an event loop")
        logger.debug("Bot API call %s", method)
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(self.timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise TransportError(method, "timed out") from e
        except TelegramError as e:
            raise TransportError(method, e.message) from e

    @staticmethod
    def _message_id(method: str, message) -> int:
        try:
            return int(message.message_id)
        except (AttributeError, TypeError, ValueError) as e:
            raise TransportError(method, f"unexpected result {message!r}") from e

    def send_photo(self, chat_id: int, photo: bytes, caption: str, parse_mode: Optional[str] = None) -> int:
        message = self._run(
            "sendPhoto",
            self.bot.send_photo(chat_id=chat_id, photo=photo, caption=caption, parse_mode=parse_mode),
        )
        return self._message_id("sendPhoto", message)

    def send_text(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> int:
        message = self._run(
            "sendMessage",
            self.bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode),
        )
        return self._message_id("sendMessage", message)

    def delete_message(self, chat_id: int, message_id: int) -> None:
        try:
            self._run("deleteMessage", self.bot.delete_message(chat_id=chat_id, message_id=message_id))
        except TransportError as e:
            if isinstance(e.__cause__, BadRequest) and "message to delete not found" in e.description.lower():
                return
            raise

    def ban_member(self, chat_id: int, user_id: int, until: int) -> None:
        self._run(
            "banChatMember",
            self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id, until_date=int(until), revoke_messages=False),
        )
