import pytest

from fency.coordinator import Coordinator
from fency.generators import Challenge, GenerationError
from fency.localization import LocalizationService
from fency.store import VerificationRegistry
from fency.transport import TransportError


class FakeClock:
    def __init__(self, start: float = 1000.0, wall_start: float = 1_700_000_000.0):
        self.now = start
        self.wall_offset = wall_start - start

    def monotonic(self) -> float:
        return self.now

    def wall(self) -> float:
        return self.now + self.wall_offset

    def sleep(self, seconds: float) -> None:
        self.now += max(0.0, seconds)


class RecordingTransport:
    def __init__(self, first_id: int = 100):
        self.calls = []
        self.next_id = first_id
        self.fail = set()

    def _id(self) -> int:
        msg_id = self.next_id
        self.next_id += 1
        return msg_id

    def send_photo(self, chat_id, photo, caption, parse_mode=None):
        self.calls.append(("send_photo", chat_id, caption, parse_mode))
        if "send_photo" in self.fail:
            raise TransportError("sendPhoto", "Bad Request: chat not found")
        return self._id()

    def send_text(self, chat_id, text, parse_mode=None):
        self.calls.append(("send_text", chat_id, text, parse_mode))
        if "send_text" in self.fail:
            raise TransportError("sendMessage", "Forbidden")
        return self._id()

    def delete_message(self, chat_id, message_id):
        self.calls.append(("delete_message", chat_id, message_id))
        if "delete_message" in self.fail:
            raise TransportError("deleteMessage", "Bad Request: message can't be deleted")

    def ban_member(self, chat_id, user_id, until):
        self.calls.append(("ban_member", chat_id, user_id, until))
        if "ban_member" in self.fail:
            raise TransportError("banChatMember", "Bad Request: not enough rights")

    def names(self):
        return [c[0] for c in self.calls]


class FixedCaptcha:
    def __init__(self, answer: str = "1234"):
        self.answer = answer
        self.fail = False

    def generate(self) -> Challenge:
        if self.fail:
            raise GenerationError("random source failed")
        return Challenge(image=b"\x89PNG fake", answer=self.answer)


class TaskQueue:
    """Collects spawned background tasks so tests decide when they run."""

    def __init__(self):
        self.tasks = []

    def __call__(self, target, *args):
        self.tasks.append((target, args))

    def run_next(self):
        target, args = self.tasks.pop(0)
        target(*args)

    def run_all(self):
        while self.tasks:
            self.run_next()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def captcha():
    return FixedCaptcha()


@pytest.fixture
def tasks():
    return TaskQueue()


@pytest.fixture
def registry(clock):
    return VerificationRegistry(clock=clock.monotonic)


@pytest.fixture
def localization():
    return LocalizationService(default_language="en", fallback_language="en", languages=["en", "ru"])


@pytest.fixture
def coordinator(transport, registry, captcha, localization, clock, tasks):
    return Coordinator(
        transport,
        registry,
        captcha,
        localization,
        clock=clock.monotonic,
        wall_clock=clock.wall,
        sleep=clock.sleep,
        spawn=tasks,
        test_command=True,
    )
