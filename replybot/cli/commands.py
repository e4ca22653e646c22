"""CLI commands for ReplyBot."""

import asyncio
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from replybot import __logo__, __version__
from replybot.auto_reply.dispatch import DispatchPipeline
from replybot.channels.base import BaseChannel
from replybot.config.schema import Config

app = typer.Typer(
    name="replybot",
    help=f"{__logo__} ReplyBot - Personal chat auto-responder",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} ReplyBot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """ReplyBot - Personal chat auto-responder."""
    pass


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _load_config() -> Config:
    from replybot.config.loader import load_config
    from replybot.errors import ConfigError

    try:
        return load_config()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def build_pipeline(config: Config, channel: BaseChannel | None = None) -> DispatchPipeline:
    """Wire every auto-reply component from configuration."""
    from replybot.agent.context import ContextBuilder
    from replybot.agent.responder import ResponseGenerator
    from replybot.auto_reply.commands import CommandRouter
    from replybot.auto_reply.cooldown import CooldownTracker
    from replybot.memory.conversation import ConversationMemory
    from replybot.memory.store import ConversationStore
    from replybot.personality.loader import PersonalityLoader
    from replybot.providers.litellm_provider import LiteLLMProvider

    personalities = PersonalityLoader(config.personalities_dir)
    personalities.load()

    memory = ConversationMemory(
        ConversationStore(config.memory.storage_path),
        max_context_messages=config.memory.max_context_messages,
        summarization_threshold=config.memory.summarization_threshold,
    )
    memory.initialize()

    provider = LiteLLMProvider(
        api_key=config.provider.api_key or None,
        api_base=config.provider.api_base,
        default_model=config.provider.model,
        fallback_models=config.provider.fallback_models,
        cooldown_seconds=config.provider.cooldown_seconds,
    )

    generator = ResponseGenerator(
        provider,
        ContextBuilder(personalities, config.bot.personality),
        max_response_length=config.bot.max_response_length,
        timeout_seconds=config.bot.generation_timeout_s,
        max_tokens=config.provider.max_tokens,
        temperature=config.provider.temperature,
    )

    pipeline = DispatchPipeline(
        config=config,
        memory=memory,
        commands=CommandRouter(config, personalities),
        cooldowns=CooldownTracker(config.filtering.short_cooldown_ms),
        generator=generator,
    )
    if channel:
        pipeline.attach_channel(channel)
    return pipeline


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """Initialize ReplyBot configuration and personality profiles."""
    from replybot.config.loader import get_config_path, save_config
    from replybot.personality.loader import write_default_personalities

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    written = write_default_personalities(config.personalities_dir)
    console.print(
        f"[green]✓[/green] {len(written)} personality profiles in {config.personalities_dir}"
    )

    config.memory.storage_path.mkdir(parents=True, exist_ok=True)
    console.print(f"[green]✓[/green] Conversation storage at {config.memory.storage_path}")

    console.print(f"\n{__logo__} ReplyBot is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Add your API key to [cyan]{config_path}[/cyan] under provider.api_key")
    console.print("     or export [cyan]REPLYBOT_PROVIDER__API_KEY[/cyan]")
    console.print("  2. Chat: [cyan]replybot chat[/cyan]")


# ============================================================================
# Chat
# ============================================================================


@app.command()
def chat(
    contact: str = typer.Option("console@c.us", "--contact", "-c", help="Contact ID to chat as"),
    name: str = typer.Option("You", "--name", "-n", help="Display name for the contact"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Talk to the auto-responder from the terminal."""
    from replybot.auto_reply.maintenance import MaintenanceService
    from replybot.channels.console import ConsoleChannel

    _setup_logging(verbose)
    config = _load_config()

    if not config.provider.api_key:
        console.print("[yellow]Warning: No API key configured, replies may fall back.[/yellow]")

    channel = ConsoleChannel(contact_id=contact, display_name=name, console=console)
    pipeline = build_pipeline(config, channel)
    maintenance = MaintenanceService(pipeline, config.maintenance.every_seconds)

    console.print(f"{__logo__} Chatting as [cyan]{contact}[/cyan] (type 'exit' to quit)\n")

    async def run():
        worker = asyncio.create_task(pipeline.start())
        if config.maintenance.enabled:
            await maintenance.start()
        await channel.start()
        try:
            await channel.wait_closed()
            await pipeline.drain()
        finally:
            await channel.stop()
            await maintenance.stop()
            pipeline.stop()
            await worker

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nGoodbye!")


# ============================================================================
# Status / Inspection
# ============================================================================


@app.command()
def status():
    """Show ReplyBot status and stored conversations."""
    from replybot.config.loader import get_config_path
    from replybot.memory.store import ConversationStore

    config_path = get_config_path()
    config = _load_config()
    storage = config.memory.storage_path

    console.print(f"{__logo__} ReplyBot Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Storage: {storage} {'[green]✓[/green]' if storage.exists() else '[red]✗[/red]'}")
    console.print(f"Model: {config.provider.model}")
    console.print(f"API key: {'[green]✓[/green]' if config.provider.api_key else '[dim]not set[/dim]'}")
    console.print(f"Personality: {config.active_personality_label}")

    if not storage.exists():
        return

    store = ConversationStore(storage)
    conversations = list(store.iter_conversations())
    summaries = sum(1 for c in conversations if store.summary_path(c.id).exists())

    console.print("\n[bold]Memory:[/bold]")
    console.print(f"  Conversations: {len(conversations)}")
    console.print(f"  Summaries: {summaries}")
    console.print(f"  Retained messages: {sum(len(c.messages) for c in conversations)}")
    console.print(f"  Total messages: {sum(c.total_messages for c in conversations)}")


@app.command()
def personalities():
    """List available personality profiles."""
    from replybot.personality.loader import PersonalityLoader

    config = _load_config()
    loader = PersonalityLoader(config.personalities_dir)
    loader.load()

    table = Table(title="Personalities")
    table.add_column("Name", style="cyan")
    table.add_column("Display Name")
    table.add_column("Description")
    table.add_column("Arabic", style="green")
    table.add_column("Active", style="yellow")

    for personality in loader.all():
        table.add_row(
            personality.name,
            personality.display_name,
            personality.description,
            "✓" if personality.language_support.arabic else "",
            "✓" if personality.name == config.bot.personality else "",
        )

    console.print(table)


@app.command()
def cleanup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Run one maintenance pass over stored conversations."""
    _setup_logging(verbose)
    config = _load_config()

    pipeline = build_pipeline(config)
    evicted = asyncio.run(pipeline.run_maintenance())
    removed = evicted["conversations"]

    console.print(
        f"[green]✓[/green] Removed {removed} conversations older than "
        f"{config.memory.max_conversation_age_days} days"
    )


if __name__ == "__main__":
    app()
