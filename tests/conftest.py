"""
Pytest configuration and shared fixtures for ReplyBot tests.
"""

import itertools
from pathlib import Path
from typing import Any

import pytest

from replybot.agent.context import ContextBuilder
from replybot.agent.responder import ResponseGenerator
from replybot.auto_reply.commands import CommandRouter
from replybot.auto_reply.cooldown import CooldownTracker
from replybot.auto_reply.dispatch import DispatchPipeline
from replybot.bus.events import InboundEvent
from replybot.channels.base import BaseChannel
from replybot.config.schema import Config
from replybot.memory.conversation import ConversationMemory
from replybot.memory.models import Message
from replybot.memory.store import ConversationStore
from replybot.personality.loader import PersonalityLoader, write_default_personalities
from replybot.providers.base import LLMProvider, LLMResponse


START_TIME = 1_700_000_000.0

_event_ids = itertools.count(1)


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel(BaseChannel):
    """Channel that records sent messages instead of delivering them."""

    name = "fake"

    def __init__(self, names: dict[str, str] | None = None, fail: bool = False):
        super().__init__()
        self.sent: list[tuple[str, str]] = []
        self.names = names or {}
        self.fail = fail

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send(self, contact_id: str, text: str) -> bool:
        if self.fail:
            raise ConnectionError("transport down")
        self.sent.append((contact_id, text))
        return True

    async def get_contact_name(self, contact_id: str) -> str | None:
        return self.names.get(contact_id)

    async def receive(self, event: InboundEvent) -> None:
        await self._emit(event)


class FakeProvider(LLMProvider):
    """Provider returning a canned reply, or raising when told to."""

    def __init__(self, reply: str = "Sure, happy to help with that.", error: Exception | None = None):
        super().__init__()
        self.reply = reply
        self.error = error
        self.calls: list[list[dict[str, Any]]] = []

    async def chat(self, messages, model=None, max_tokens=1024, temperature=0.7) -> LLMResponse:
        self.calls.append(messages)
        if self.error:
            raise self.error
        return LLMResponse(content=self.reply)

    def get_default_model(self) -> str:
        return "fake/model"


def make_event(body: str, sender: str = "15550001111@c.us", **kwargs) -> InboundEvent:
    """Build an inbound chat event."""
    kwargs.setdefault("id", f"msg_{next(_event_ids)}")
    kwargs.setdefault("timestamp", int(START_TIME))
    return InboundEvent(sender=sender, body=body, **kwargs)


def make_message(index: int, body: str | None = None, sender: str = "alice@c.us") -> Message:
    """Build the index-th message of a conversation."""
    return Message(
        id=f"m{index}",
        sender_id=sender,
        body=body if body is not None else f"message number {index}",
        timestamp=int(START_TIME) + index,
    )


@pytest.fixture
def workspace(tmp_path) -> Path:
    """Create a temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def conversations_dir(workspace) -> Path:
    return workspace / "conversations"


@pytest.fixture
def personalities_dir(workspace) -> Path:
    """Personalities directory populated with the bundled profiles."""
    path = workspace / "personalities"
    write_default_personalities(path)
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(workspace, personalities_dir) -> Config:
    config = Config()
    config.memory.conversation_path = str(workspace / "conversations")
    config.memory.max_context_messages = 5
    config.memory.summarization_threshold = 10
    config.personalities_path = str(personalities_dir)
    return config


@pytest.fixture
def personalities(personalities_dir) -> PersonalityLoader:
    loader = PersonalityLoader(personalities_dir)
    loader.load()
    return loader


@pytest.fixture
def store(conversations_dir) -> ConversationStore:
    return ConversationStore(conversations_dir)


@pytest.fixture
def memory(store, clock) -> ConversationMemory:
    memory = ConversationMemory(store, max_context_messages=5, summarization_threshold=10, clock=clock)
    memory.initialize()
    return memory


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel(names={"15550001111@c.us": "Alice"})


@pytest.fixture
def pipeline(config, memory, personalities, provider, channel, clock) -> DispatchPipeline:
    """Fully wired pipeline over fakes."""
    generator = ResponseGenerator(
        provider,
        ContextBuilder(personalities, config.bot.personality),
        max_response_length=config.bot.max_response_length,
        timeout_seconds=1.0,
    )
    pipeline = DispatchPipeline(
        config=config,
        memory=memory,
        commands=CommandRouter(config, personalities, clock=clock),
        cooldowns=CooldownTracker(config.filtering.short_cooldown_ms, clock=clock),
        generator=generator,
        clock=clock,
    )
    pipeline.attach_channel(channel)
    return pipeline
