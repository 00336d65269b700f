from .coordinator import Coordinator
from .generators import AssetCaptcha, Challenge, DigitCaptcha, GenerationError
from .store import PendingRecord, VerificationRegistry
from .transport import TelegramTransport, TransportError

__all__ = [
    "AssetCaptcha",
    "Challenge",
    "Coordinator",
    "DigitCaptcha",
    "GenerationError",
    "PendingRecord",
    "TelegramTransport",
    "TransportError",
    "VerificationRegistry",
]
