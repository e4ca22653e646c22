"""Context builder for assembling reply prompts."""

from datetime import datetime
from typing import Any

from replybot.memory.models import ConversationContext, Summary
from replybot.personality.loader import PersonalityLoader


BOT_SENDER_ID = "bot"


class ContextBuilder:
    """
    Builds the chat messages sent to the provider.

    The system message carries the personality prompt; the user message
    carries the summary, the recent conversation, the current message
    and the language instruction.
    """

    def __init__(self, personalities: PersonalityLoader, personality: str = "neutral"):
        self.personalities = personalities
        self.personality = personality

    def build_messages(
        self,
        message: str,
        context: ConversationContext,
        display_name: str = "User",
    ) -> list[dict[str, Any]]:
        """
        Build the provider message list.

        Args:
            message: Text the contact just sent.
            context: Conversation snapshot taken before generation.
            display_name: Name used to address the contact.
        """
        system_prompt = self.personalities.get_prompt(self.personality)
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({
            "role": "user",
            "content": self.build_user_prompt(message, context, display_name),
        })
        return messages

    def build_user_prompt(
        self,
        message: str,
        context: ConversationContext,
        display_name: str = "User",
    ) -> str:
        parts = []

        context_prompt = self.build_context_prompt(context)
        if context_prompt:
            parts.append(context_prompt)

        parts.append(f'Current message from {display_name}: "{message}"')
        parts.append(self.personalities.get_language_instruction(self.personality, message))
        parts.append("Please respond naturally and helpfully. Keep your response concise and relevant.")

        return "\n\n".join(parts)

    def build_context_prompt(self, context: ConversationContext) -> str:
        """Render the summary and recent messages as plain text."""
        sections = []

        if context.summary:
            sections.append(self._format_summary(context.summary))

        if context.messages:
            lines = ["Recent conversation:"]
            for msg in context.messages:
                sender = "Assistant" if msg.sender_id == BOT_SENDER_ID else "User"
                lines.append(f"[{_format_time(msg.timestamp)}] {sender}: {msg.body}")
            sections.append("\n".join(lines))

        return "\n\n".join(sections)

    @staticmethod
    def _format_summary(summary: Summary) -> str:
        lines = [f"Previous conversation summary ({summary.message_count} messages):"]
        if summary.key_topics:
            lines.append(f"Key topics discussed: {', '.join(summary.key_topics)}")
        start, end = summary.time_range.start, summary.time_range.end
        if start and end:
            lines.append(f"Time period: {_format_datetime(start)} to {_format_datetime(end)}")
        return "\n".join(lines)


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%H:%M:%S")


def _format_datetime(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")
