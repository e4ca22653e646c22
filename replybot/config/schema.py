"""Configuration schema using Pydantic."""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


DEFAULT_COMMANDS = ["help", "status", "stop", "start", "info", "personalities"]


class BotConfig(BaseModel):
    """Reply behaviour configuration."""
    personality: str = "neutral"  # Active personality profile name
    response_delay_ms: int = 0  # Pause before each send
    max_response_length: int = 500  # Characters, ellipsis included
    auto_responses_enabled: bool = True  # Default for contacts without a preference
    generation_timeout_s: float = 30.0


class CommandsConfig(BaseModel):
    """Administrative command configuration."""
    prefix: str = "/"
    enabled: bool = True
    available_commands: list[str] = Field(default_factory=lambda: list(DEFAULT_COMMANDS))


class FilteringConfig(BaseModel):
    """Inbound filtering and rate limits."""
    ignore_groups: bool = True
    response_frequency_limit: int = 10  # Max replies per window per contact
    response_frequency_window_ms: int = 60_000
    short_cooldown_ms: int = 1000  # Min gap between replies to one contact
    ignored_contacts: list[str] = Field(default_factory=list)


class MemoryConfig(BaseModel):
    """Conversation memory configuration."""
    conversation_path: str = "~/.replybot/conversations"
    max_context_messages: int = 20
    summarization_threshold: int = 50
    max_conversation_age_days: int = 30

    @property
    def storage_path(self) -> Path:
        """Get expanded conversation storage path."""
        return Path(self.conversation_path).expanduser()

    @property
    def max_conversation_age_ms(self) -> int:
        return self.max_conversation_age_days * 24 * 60 * 60 * 1000


class MaintenanceConfig(BaseModel):
    """Periodic cleanup configuration."""
    enabled: bool = True
    every_seconds: int = 3600
    cooldown_max_age_ms: int = 24 * 60 * 60 * 1000
    preference_max_age_ms: int = 7 * 24 * 60 * 60 * 1000


class ProviderConfig(BaseModel):
    """LLM provider configuration."""
    model: str = "gemini/gemini-1.5-flash"
    api_key: str = ""
    api_base: str | None = None
    fallback_models: list[str] = Field(default_factory=list)
    max_tokens: int = 1024
    temperature: float = 0.7
    cooldown_seconds: int = 300  # Time before retrying a failed model


class Config(BaseSettings):
    """Root configuration for ReplyBot."""
    bot: BotConfig = Field(default_factory=BotConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    filtering: FilteringConfig = Field(default_factory=FilteringConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    personalities_path: str = "~/.replybot/personalities"

    model_config = SettingsConfigDict(
        env_prefix="REPLYBOT_",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment outranks values read from config.json, which arrive as init kwargs
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @property
    def personalities_dir(self) -> Path:
        """Get expanded personalities directory."""
        return Path(self.personalities_path).expanduser()

    @property
    def active_personality_label(self) -> str:
        """Human-readable name of the active personality."""
        if self.bot.personality == "custom":
            return "Custom (Your Style)"
        return self.bot.personality
