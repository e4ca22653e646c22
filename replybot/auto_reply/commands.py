"""
Administrative commands for ReplyBot auto-reply.

Supports:
- Prefixed commands parsed from message bodies
- A closed registry of handlers with aliases and help text
- Per-contact opt-in/opt-out preferences
"""

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from replybot.bus.events import InboundEvent
from replybot.config.schema import Config
from replybot.personality.loader import PersonalityLoader


@dataclass
class Command:
    """Command name plus whitespace-separated arguments."""
    name: str
    arguments: list[str] = field(default_factory=list)
    raw: str = ""


@dataclass
class UserPreference:
    """Per-contact reply preference."""
    responses_enabled: bool
    last_command_at: float | None = None  # Epoch milliseconds
    command_count: int = 0


# Handlers receive the parsed command and a context dict, and return reply text
CommandHandler = Callable[[Command, dict[str, Any]], Awaitable[str | None]]


@dataclass
class RegisteredCommand:
    name: str
    handler: CommandHandler
    help_text: str = ""


class CommandRegistry:
    """Named command handlers; aliases resolve to the canonical entry."""

    def __init__(self, prefix: str = "/"):
        self.prefix = prefix
        self._entries: dict[str, RegisteredCommand] = {}
        self._aliases: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str = "",
        aliases: list[str] | None = None,
    ) -> None:
        """Add or replace ``name``. Re-registering keeps existing aliases."""
        self._entries[name] = RegisteredCommand(name, handler, help_text)
        self._aliases.update({alias: name for alias in aliases or []})

    def resolve(self, command_name: str) -> str | None:
        """Canonical name for a command or alias."""
        if command_name in self._entries:
            return command_name
        return self._aliases.get(command_name)

    async def execute(
        self,
        command: Command,
        context: dict[str, Any] | None = None,
    ) -> str | None:
        """Run the handler for ``command``; None when nothing is registered."""
        canonical = self.resolve(command.name)
        if canonical is None:
            return None
        return await self._entries[canonical].handler(command, context or {})

    def get_help(self, names: list[str] | None = None) -> str:
        """Help lines for the given commands (all registered when None)."""
        selected = [self._entries[n] for n in (names or self._entries) if n in self._entries]
        return "\n".join(
            f"{self.prefix}{entry.name} - {entry.help_text}"
            for entry in selected
            if entry.help_text
        )

    def list_commands(self) -> list[str]:
        return sorted(self._entries)


def parse_command(text: str, prefix: str = "/") -> Command | None:
    """
    Parse a command from a message body.

    Examples:
        /help -> Command(name="help")
        /stop now -> Command(name="stop", arguments=["now"])

    Args:
        text: Message body.
        prefix: Command prefix.

    Returns:
        Parsed Command or None if the body is not a command.
    """
    if not text or not prefix or not text.startswith(prefix):
        return None

    parts = text[len(prefix):].split()
    if not parts:
        return None

    return Command(name=parts[0].lower(), arguments=parts[1:], raw=text.strip())


class CommandRouter:
    """
    Routes command messages and owns per-contact preferences.

    Preference state per contact is enabled/disabled, starting from the
    global auto-response default and toggled only by stop/start.
    """

    def __init__(
        self,
        config: Config,
        personalities: PersonalityLoader | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.prefix = config.commands.prefix
        self.enabled = config.commands.enabled
        self.available_commands = list(config.commands.available_commands)
        self.personalities = personalities
        self._clock = clock
        self._preferences: dict[str, UserPreference] = {}

        self.registry = CommandRegistry(prefix=self.prefix)
        self._register_builtin_handlers()
        self._validate_commands()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _validate_commands(self) -> None:
        missing = [name for name in self.available_commands if self.registry.resolve(name) is None]
        if missing:
            logger.warning(f"Configured commands without handlers: {', '.join(missing)}")

    async def route(self, event: InboundEvent) -> str | None:
        """
        Handle a command message.

        Returns:
            Reply text, or None when the body is not a command.
        """
        if not self.enabled or not event.body:
            return None

        command = parse_command(event.body, self.prefix)
        if command is None:
            return None

        canonical = self.registry.resolve(command.name)
        if canonical is None or canonical not in self.available_commands:
            if command.name in self.available_commands:
                return f"❌ Command {command.name} is not implemented yet."
            return (
                f"❌ Unknown command: {command.name}\n"
                f"Type {self.prefix}help to see available commands."
            )

        preference = self.get_preference(event.sender)
        preference.last_command_at = self._now_ms()
        preference.command_count += 1

        logger.info(f"Command /{canonical} from {event.sender} args={command.arguments}")

        try:
            return await self.registry.execute(command, {"event": event, "preference": preference})
        except Exception as e:
            logger.error(f"Command {canonical} failed for {event.sender}: {e}")
            return "❌ An error occurred while processing your command."

    def get_preference(self, contact_id: str) -> UserPreference:
        """Get a contact's preference, creating the default on first use."""
        if contact_id not in self._preferences:
            self._preferences[contact_id] = UserPreference(
                responses_enabled=self.config.bot.auto_responses_enabled,
            )
        return self._preferences[contact_id]

    def is_responses_enabled(self, contact_id: str) -> bool:
        """Check if a contact wants replies. Does not create a preference."""
        preference = self._preferences.get(contact_id)
        if preference is None:
            return self.config.bot.auto_responses_enabled
        return preference.responses_enabled

    def is_stale(self, contact_id: str, max_age_ms: int) -> bool:
        """Check if a contact's last command is older than ``max_age_ms``."""
        preference = self._preferences.get(contact_id)
        if preference is None or preference.last_command_at is None:
            return False
        return preference.last_command_at < self._now_ms() - max_age_ms

    def stale_contacts(self, max_age_ms: int) -> list[str]:
        return [contact_id for contact_id in self._preferences if self.is_stale(contact_id, max_age_ms)]

    def forget(self, contact_id: str) -> bool:
        return self._preferences.pop(contact_id, None) is not None

    def cleanup_old_settings(self, max_age_ms: int = 7 * 24 * 60 * 60 * 1000) -> int:
        """
        Drop preferences not touched by a command within ``max_age_ms``.

        Returns:
            Number of preferences removed.
        """
        stale = self.stale_contacts(max_age_ms)
        for contact_id in stale:
            del self._preferences[contact_id]

        if stale:
            logger.info(f"Cleaned up {len(stale)} old user settings")
        return len(stale)

    def get_stats(self) -> dict[str, Any]:
        total = len(self._preferences)
        enabled = sum(1 for p in self._preferences.values() if p.responses_enabled)
        return {
            "total_users": total,
            "enabled_users": enabled,
            "disabled_users": total - enabled,
            "available_commands": len(self.available_commands),
            "commands_enabled": self.enabled,
        }

    # ------------------------------------------------------------------
    # Built-in handlers
    # ------------------------------------------------------------------

    def _register_builtin_handlers(self) -> None:
        self.registry.register("help", self._handle_help, "Show this help message", ["?", "h"])
        self.registry.register("status", self._handle_status, "Check bot status and information")
        self.registry.register("stop", self._handle_stop, "Disable auto-responses for you")
        self.registry.register("start", self._handle_start, "Enable auto-responses for you")
        self.registry.register("info", self._handle_info, "Show bot configuration and personality")
        self.registry.register("personalities", self._handle_personalities, "List available personality profiles")

    @staticmethod
    def _flag(value: bool) -> str:
        return "✅ Enabled" if value else "❌ Disabled"

    async def _handle_help(self, cmd: Command, ctx: dict[str, Any]) -> str:
        commands = self.registry.get_help(self.available_commands)
        return (
            "🤖 *Bot Commands*\n\n"
            f"{commands}\n\n"
            "*Usage:*\n"
            "Just send any message and I'll reply. Use commands to control my behavior."
        )

    async def _handle_status(self, cmd: Command, ctx: dict[str, Any]) -> str:
        preference: UserPreference = ctx["preference"]
        bot = self.config.bot
        return (
            "🤖 *Bot Status*\n\n"
            "*Your Settings:*\n"
            f"• Auto-responses: {self._flag(preference.responses_enabled)}\n"
            f"• Personality: {self.config.active_personality_label}\n\n"
            "*Bot Info:*\n"
            f"• Commands: {self._flag(self.enabled)}\n"
            f"• Max response length: {bot.max_response_length} characters\n"
            f"• Response delay: {bot.response_delay_ms}ms"
        )

    async def _handle_stop(self, cmd: Command, ctx: dict[str, Any]) -> str:
        preference: UserPreference = ctx["preference"]
        preference.responses_enabled = False
        logger.info(f"User disabled responses: {ctx['event'].sender}")
        return (
            "✅ *Auto-responses disabled*\n\n"
            f"I won't respond to your messages anymore. Use {self.prefix}start to re-enable responses.\n\n"
            f"You can still use commands like {self.prefix}help and {self.prefix}status."
        )

    async def _handle_start(self, cmd: Command, ctx: dict[str, Any]) -> str:
        preference: UserPreference = ctx["preference"]
        preference.responses_enabled = True
        logger.info(f"User enabled responses: {ctx['event'].sender}")
        return (
            "✅ *Auto-responses enabled*\n\n"
            f"*Current personality:* {self.config.active_personality_label}\n"
            f"*Max response length:* {self.config.bot.max_response_length} characters\n\n"
            f"Send me any message. Use {self.prefix}help for more commands."
        )

    async def _handle_info(self, cmd: Command, ctx: dict[str, Any]) -> str:
        preference: UserPreference = ctx["preference"]
        bot = self.config.bot
        return (
            "🤖 *Bot Information*\n\n"
            "*Configuration:*\n"
            f"• Personality: {self.config.active_personality_label}\n"
            f"• Auto-responses: {self._flag(bot.auto_responses_enabled)}\n"
            f"• Response delay: {bot.response_delay_ms}ms\n"
            f"• Max response length: {bot.max_response_length} characters\n"
            f"• Context window: {self.config.memory.max_context_messages} messages\n\n"
            "*Your Settings:*\n"
            f"• Responses: {self._flag(preference.responses_enabled)}\n\n"
            "*Note:* I remember our conversation history to give better replies!"
        )

    async def _handle_personalities(self, cmd: Command, ctx: dict[str, Any]) -> str:
        if not self.personalities:
            return "❌ Personality system not available."

        current = self.config.bot.personality
        lines = ["🎭 *Available Personalities*", ""]
        for personality in self.personalities.all():
            marker = " ✅" if personality.name == current else ""
            lines.append(f"• *{personality.display_name}*{marker}")
            lines.append(f"  {personality.description}")
            lines.append("")

        lines.append(f"*Current:* {current}")
        lines.append("*Note:* Personality can be changed in the config file.")
        return "\n".join(lines)
