import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .mention import escape_markdown

logger = logging.getLogger(__name__)

LOCALES_DIR = Path(__file__).resolve().parent / "locales"


class Localizer:
    def __init__(self, language: str, messages: Dict[str, str], fallback: Optional[Dict[str, str]] = None):
        self.language = language
        self.messages = messages
        self.fallback = fallback or {}

    def get(self, key: str, markdown: bool = False, **data) -> str:
        """Return the text for ``key`` filled with ``data``; the key itself if unknown.

        With ``markdown`` the unknown-key fallback is escaped for MarkdownV2,
        catalog texts are stored pre-escaped.
        """
        text = self.messages.get(key)
        if text is None:
            text = self.fallback.get(key)
        if text is None:
            logger.warning("Localization key %r missing for language %s", key, self.language)
            return escape_markdown(key) if markdown else key
        try:
            return text.format_map(data)
        except (KeyError, IndexError, ValueError) as e:
            logger.warning("Localization of %r failed: %s", key, e)
            return text


def load_messages(language: str, locales_dir: Path = LOCALES_DIR) -> Dict[str, str]:
    path = locales_dir / f"{language}.json"
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return {str(k): str(v) for k, v in data.items()}


class LocalizationService:
    def __init__(
        self,
        default_language: str = "en",
        fallback_language: str = "en",
        languages: Iterable[str] = ("en", "ru"),
        locales_dir: Path = LOCALES_DIR,
    ):
        self.default_language = default_language
        self.fallback_language = fallback_language
        self._messages: Dict[str, Dict[str, str]] = {}
        for lang in languages:
            self._messages[lang] = load_messages(lang, locales_dir)
        if fallback_language not in self._messages:
            self._messages[fallback_language] = load_messages(fallback_language, locales_dir)

    def supported_languages(self) -> List[str]:
        return sorted(self._messages)

    def normalize(self, language_code: Optional[str]) -> str:
        if not language_code:
            return self.default_language
        if language_code in self._messages:
            return language_code
        short = language_code[:2]
        if len(language_code) >= 2 and short in self._messages:
            return short
        return self.default_language

    def localizer_for(self, language_code: Optional[str] = None) -> Localizer:
        lang = self.normalize(language_code)
        messages = self._messages.get(lang) or self._messages[self.fallback_language]
        return Localizer(lang, messages, self._messages[self.fallback_language])
