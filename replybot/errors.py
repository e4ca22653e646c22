"""Exception hierarchy for ReplyBot."""


class ReplyBotError(Exception):
    """Base class for ReplyBot errors."""


class ConfigError(ReplyBotError):
    """Configuration file could not be read or validated."""


class StorageError(ReplyBotError):
    """A conversation record could not be read, written or deleted."""

    def __init__(self, message: str, conversation_id: str = ""):
        super().__init__(message)
        self.conversation_id = conversation_id


class GenerationError(ReplyBotError):
    """The generation provider failed or returned nothing usable."""
