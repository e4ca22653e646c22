"""
Personality profiles for ReplyBot.

Profiles are JSON files in the personalities directory. Each one
supplies a prompt and optional per-profile limits. Files that are not
valid JSON or fail validation are skipped with a warning.
"""

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


ARABIC_SCRIPT = re.compile(r"[\u0600-\u06FF]")


class LanguageSupport(BaseModel):
    """Languages a profile answers in."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    english: bool = True
    arabic: bool = False
    arabic_instruction: str = ""


class Personality(BaseModel):
    """A named prompt profile."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    max_response_length: int = 500
    response_delay: int = 0
    language_support: LanguageSupport = Field(default_factory=LanguageSupport)
    slang: dict[str, Any] = Field(default_factory=dict)
    emojis: dict[str, Any] = Field(default_factory=dict)


DEFAULT_PERSONALITIES: list[dict[str, Any]] = [
    {
        "name": "neutral",
        "displayName": "Neutral",
        "description": "Balanced, clear and polite replies.",
        "prompt": "You are a helpful assistant replying to chat messages. Be clear, polite and brief.",
    },
    {
        "name": "friendly",
        "displayName": "Friendly",
        "description": "Warm and upbeat, like a good friend.",
        "prompt": "You are a warm, upbeat friend replying to chat messages. Keep it casual and kind.",
        "languageSupport": {"english": True, "arabic": True},
    },
    {
        "name": "professional",
        "displayName": "Professional",
        "description": "Concise and businesslike.",
        "prompt": "You are a professional assistant. Reply concisely and formally.",
        "maxResponseLength": 400,
    },
]


class PersonalityLoader:
    """
    Read-only lookup table of personality profiles keyed by name.

    Unknown names resolve to the default profile.
    """

    def __init__(self, personalities_dir: Path, default_personality: str = "neutral"):
        self.personalities_dir = personalities_dir
        self.default_personality = default_personality
        self._personalities: dict[str, Personality] = {}

    def load(self) -> int:
        """
        Load every *.json profile in the directory.

        Returns:
            Number of profiles loaded.
        """
        self._personalities.clear()

        if not self.personalities_dir.exists():
            logger.warning(f"Personalities directory does not exist: {self.personalities_dir}")
            return 0

        for file in sorted(self.personalities_dir.glob("*.json")):
            try:
                data = json.loads(file.read_text(encoding="utf-8"))
                personality = Personality.model_validate(data)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to read personality file {file.name}: {e}")
                continue
            except ValidationError as e:
                logger.warning(f"Invalid personality file {file.name}: {e.error_count()} error(s)")
                continue

            self._personalities[personality.name] = personality
            logger.debug(f"Loaded personality: {personality.name}")

        if not self._personalities:
            logger.warning("No valid personalities loaded")
        else:
            logger.info(f"Loaded personalities: {', '.join(self._personalities)}")

        return len(self._personalities)

    def get(self, name: str) -> Personality | None:
        """Get a profile by name, falling back to the default profile."""
        return self._personalities.get(name) or self._personalities.get(self.default_personality)

    def has(self, name: str) -> bool:
        return name in self._personalities

    def all(self) -> list[Personality]:
        return list(self._personalities.values())

    def names(self) -> list[str]:
        return list(self._personalities)

    def get_prompt(self, name: str) -> str:
        personality = self.get(name)
        return personality.prompt if personality else ""

    def get_language_instruction(self, name: str, message: str) -> str:
        """Pick the reply language instruction for a message."""
        personality = self.get(name)
        if not personality:
            return "Respond in English."

        support = personality.language_support
        if support.arabic and ARABIC_SCRIPT.search(message):
            return (
                support.arabic_instruction
                or "The user wrote in Arabic. Respond in Arabic using the same style."
            )

        return "Respond in English using the style described above."


def write_default_personalities(personalities_dir: Path) -> list[Path]:
    """Write the bundled profiles, leaving existing files untouched."""
    personalities_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for data in DEFAULT_PERSONALITIES:
        path = personalities_dir / f"{data['name']}.json"
        if not path.exists():
            path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            written.append(path)
    return written
