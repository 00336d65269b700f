import logging
import threading
import time
from typing import Callable, Iterable, Optional

from telegram import Message, Update, User

from .generators import GenerationError
from .localization import LocalizationService, Localizer
from .mention import mention
from .store import PendingRecord, VerificationRegistry
from .transport import PARSE_MODE, Transport, TransportError

logger = logging.getLogger(__name__)

ANSWER_WINDOW = 30.0  # seconds to answer
NOTICE_LIFETIME = 10.0  # seconds before a result notice is removed
BAN_DURATION = 10 * 60  # seconds

TEST_COMMAND = "/testcaptcha"


def spawn_thread(target: Callable, *args) -> None:
    th = threading.Thread(target=target, args=args, daemon=True)
    th.start()


class Coordinator:
    """Turns chat events into registry transitions and transport calls.

    The coordinator is the only writer to the registry. Background work
    (timeouts, notice removal) goes through ``spawn``; public handlers never
    raise.
    """

    def __init__(
        self,
        transport: Transport,
        registry: VerificationRegistry,
        generator,
        localization: LocalizationService,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        spawn: Callable[..., None] = spawn_thread,
        test_command: bool = False,
    ):
        self.transport = transport
        self.registry = registry
        self.generator = generator
        self.localization = localization
        self.clock = clock
        self.wall_clock = wall_clock
        self.sleep = sleep
        self.spawn = spawn
        self.test_command = test_command

    # Inbound events

    def handle_update(self, update: Update) -> None:
        msg = update.message
        if msg is None:
            return
        try:
            if msg.new_chat_members:
                self.handle_join(msg.chat.id, msg.new_chat_members)
                return
            if not msg.text or msg.from_user is None:
                return
            user = msg.from_user
            logger.info(
                "Received message from user %d (%s) in chat %d (%s): %s",
                user.id, user.username, msg.chat.id, msg.chat.username, msg.text,
            )
            if msg.text.startswith("/"):
                self.handle_command(msg)
                return
            self.handle_answer(msg.chat.id, user, msg.message_id, msg.text)
        except Exception:
            logger.exception("Unhandled error while processing update %d", update.update_id)

    def handle_join(self, chat_id: int, members: Iterable[User]) -> None:
        members = list(members)
        logger.info("Processing %d new member(s) in chat %d", len(members), chat_id)
        for member in members:
            if member.is_bot:
                logger.info("Skipping bot: %s", member.username)
                continue
            self._issue(chat_id, member)

    def handle_command(self, msg: Message) -> None:
        command = msg.text.split()[0].split("@", 1)[0].lower()
        if command == TEST_COMMAND and self.test_command and msg.from_user is not None:
            logger.info("Test captcha command from user %d in chat %d", msg.from_user.id, msg.chat.id)
            self._issue(msg.chat.id, msg.from_user, test_mode=True)

    def handle_answer(self, chat_id: int, user: User, message_id: int, text: str) -> None:
        if text.startswith("/"):
            return
        record, ok = self.registry.get(user.id)
        if not ok or record.chat_id != chat_id:
            return
        if self.registry.is_expired(user.id):
            # the timeout task owns it now
            return

        self._delete(chat_id, message_id)

        if not self.registry.take(user.id, record):
            logger.info("Challenge for user %d was resolved concurrently", user.id)
            return

        texts = self.localization.localizer_for(user.language_code)
        if text == record.answer:
            logger.info("User %d passed verification in chat %d", user.id, chat_id)
            self._delete(chat_id, record.photo_message_id)
            notice = texts.get("captcha_success", markdown=True, Username=mention(user))
            self._post_notice(chat_id, notice, PARSE_MODE, detached=True)
            return

        logger.info("User %d failed verification in chat %d", user.id, chat_id)
        if not record.test_mode:
            self._ban(chat_id, user.id)
        self._delete(chat_id, record.photo_message_id)
        self._post_notice(chat_id, texts.get("captcha_failed"), None, detached=True)

    # Challenge lifecycle

    def _issue(self, chat_id: int, user: User, test_mode: bool = False) -> Optional[PendingRecord]:
        try:
            challenge = self.generator.generate()
        except GenerationError as e:
            logger.error("Failed to generate captcha for user %d: %s", user.id, e)
            return None
        logger.debug("Generated captcha for user %d with answer %s", user.id, challenge.answer)

        texts = self.localization.localizer_for(user.language_code)
        name = mention(user)

        if test_mode:
            intro = texts.get("captcha_test_intro", markdown=True, Answer=challenge.answer)
            try:
                self.transport.send_text(chat_id, intro, PARSE_MODE)
            except TransportError as e:
                logger.error("Failed to send test captcha intro: %s", e)

        caption = (
            texts.get("captcha_welcome", markdown=True, Username=name)
            + "\n\n"
            + texts.get("captcha_prompt", markdown=True)
        )
        try:
            photo_id = self.transport.send_photo(chat_id, challenge.image, caption, PARSE_MODE)
        except TransportError as e:
            logger.error("Failed to send captcha image to chat %d: %s", chat_id, e)
            return None

        record = PendingRecord(
            chat_id=chat_id,
            user_id=user.id,
            answer=challenge.answer,
            expires_at=self.clock() + ANSWER_WINDOW,
            photo_message_id=photo_id,
            test_mode=test_mode,
        )
        # insert before scheduling so the timeout task always sees its record
        self.registry.set(user.id, record)
        self.spawn(self._background, self._expire, record, name, texts)
        logger.info("Captcha issued to user %d in chat %d (message %d)", user.id, chat_id, photo_id)
        return record

    def _expire(self, record: PendingRecord, name: str, texts: Localizer) -> None:
        self.sleep(max(0.0, record.expires_at - self.clock()))

        _, ok = self.registry.get(record.user_id)
        if not ok:
            return
        if not self.registry.is_expired(record.user_id):
            return
        if not self.registry.take(record.user_id, record):
            # replaced by a newer challenge with its own timeout
            return

        logger.info("Verification timeout for user %d in chat %d", record.user_id, record.chat_id)
        if record.test_mode:
            notice = texts.get("captcha_test_timeout", markdown=True, Username=name)
        else:
            self._ban(record.chat_id, record.user_id)
            notice = texts.get("captcha_timeout", markdown=True, Username=name)
        self._delete(record.chat_id, record.photo_message_id)
        self._post_notice(record.chat_id, notice, PARSE_MODE, detached=False)

    def _background(self, target: Callable, *args) -> None:
        try:
            target(*args)
        except Exception:
            logger.exception("Unhandled error in background task %s", target.__name__)

    # Transport helpers

    def _ban(self, chat_id: int, user_id: int) -> None:
        until = int(self.wall_clock() + BAN_DURATION)
        try:
            self.transport.ban_member(chat_id, user_id, until)
        except TransportError as e:
            logger.error("Failed to ban user %d: %s", user_id, e)

    def _delete(self, chat_id: int, message_id: int) -> None:
        try:
            self.transport.delete_message(chat_id, message_id)
        except TransportError as e:
            logger.warning("Failed to delete message %d in chat %d: %s", message_id, chat_id, e)

    def _post_notice(self, chat_id: int, text: str, parse_mode: Optional[str], detached: bool) -> None:
        try:
            msg_id = self.transport.send_text(chat_id, text, parse_mode)
        except TransportError as e:
            logger.error("Failed to send notice to chat %d: %s", chat_id, e)
            return
        if detached:
            self.spawn(self._background, self._delete_later, chat_id, msg_id)
        else:
            self._delete_later(chat_id, msg_id)

    def _delete_later(self, chat_id: int, message_id: int) -> None:
        self.sleep(NOTICE_LIFETIME)
        self._delete(chat_id, message_id)
