"""
Dispatch pipeline for ReplyBot auto-reply.

Routes each inbound event through:
1. A fixed filter chain (ignore list, groups, broadcasts, self, empty, cooldown)
2. Conversation memory append
3. Command handling
4. Opt-out and frequency checks
5. Reply generation, send, and memory append of the reply
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from replybot.agent.context import BOT_SENDER_ID
from replybot.agent.responder import ResponseGenerator
from replybot.auto_reply.commands import CommandRouter
from replybot.auto_reply.cooldown import CooldownTracker
from replybot.auto_reply.locks import KeyedLock
from replybot.bus.events import InboundEvent
from replybot.channels.base import BaseChannel
from replybot.config.schema import Config
from replybot.memory.conversation import ConversationMemory, conversation_id_for
from replybot.memory.models import Message


DEFAULT_DISPLAY_NAME = "User"

ResponseSender = Callable[[str, str], Awaitable[bool]]
ContactResolver = Callable[[str], Awaitable[str | None]]


class DispatchOutcome(str, Enum):
    """How an inbound event was handled."""
    IGNORED_CONTACT = "ignored_contact"
    GROUP = "group"
    BROADCAST = "broadcast"
    FROM_SELF = "from_self"
    EMPTY = "empty"
    COOLDOWN = "cooldown"
    COMMAND = "command"
    RESPONSES_DISABLED = "responses_disabled"
    RATE_LIMITED = "rate_limited"
    REPLIED = "replied"
    ERROR = "error"


class DispatchPipeline:
    """
    Processes inbound events one at a time in arrival order.

    Per-contact state is only touched while holding that contact's
    lock. The lock is released before the generation call and the
    send, so a slow reply never blocks filtering of the next event.
    """

    def __init__(
        self,
        config: Config,
        memory: ConversationMemory,
        commands: CommandRouter,
        cooldowns: CooldownTracker,
        generator: ResponseGenerator,
        clock: Callable[[], float] = time.time,
        max_queue_size: int = 100,
    ):
        self.config = config
        self.memory = memory
        self.commands = commands
        self.cooldowns = cooldowns
        self.generator = generator
        self._clock = clock

        self.ignored_contacts: set[str] = set(config.filtering.ignored_contacts)
        self._locks = KeyedLock()
        self._queue: asyncio.Queue[InboundEvent] = asyncio.Queue(maxsize=max_queue_size)

        # Transport callbacks (set by caller)
        self._response_sender: ResponseSender | None = None
        self._contact_resolver: ContactResolver | None = None

        # Stats
        self._received_count = 0
        self._dropped_count = 0
        self._error_count = 0
        self._outcomes: dict[str, int] = {}
        self._running = False

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_response_sender(self, sender: ResponseSender) -> None:
        """
        Set the response sender.

        Args:
            sender: Async function(contact_id, text) -> delivered.
        """
        self._response_sender = sender

    def set_contact_resolver(self, resolver: ContactResolver) -> None:
        """Set the async lookup for contact display names."""
        self._contact_resolver = resolver

    def attach_channel(self, channel: BaseChannel) -> None:
        """Receive events from a channel and reply through it."""
        channel.on_event(self.submit)
        self.set_response_sender(channel.send)
        self.set_contact_resolver(channel.get_contact_name)

    def add_ignored_contact(self, contact_id: str) -> None:
        self.ignored_contacts.add(contact_id)
        logger.info(f"Contact added to ignore list: {contact_id}")

    def remove_ignored_contact(self, contact_id: str) -> None:
        self.ignored_contacts.discard(contact_id)
        logger.info(f"Contact removed from ignore list: {contact_id}")

    # ------------------------------------------------------------------
    # Queue loop
    # ------------------------------------------------------------------

    async def submit(self, event: InboundEvent) -> bool:
        """
        Queue an event for the worker loop.

        Returns:
            True if queued, False if the queue was full.
        """
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping message {event.id} from {event.sender}")
            self._dropped_count += 1
            return False

    async def start(self) -> None:
        """Run the dispatch loop until stopped."""
        self._running = True
        logger.info("Dispatch pipeline started")

        while self._running:
            try:
                # Get next event (with timeout for clean shutdown)
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                await self.handle_event(event)
                self._queue.task_done()

            except asyncio.CancelledError:
                break

    def stop(self) -> None:
        """Stop the dispatch loop."""
        self._running = False
        logger.info("Dispatch pipeline stopped")

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def handle_event(self, event: InboundEvent) -> DispatchOutcome:
        """
        Process one event. Never raises.

        Unexpected errors are logged with the event identifiers and do
        not affect later events.
        """
        self._received_count += 1
        logger.debug(f"Processing message {event.id} from {event.sender}: {event.preview!r}")

        try:
            outcome = await self._process(event)
        except Exception as e:
            self._error_count += 1
            logger.exception(f"Error handling message {event.id} from {event.sender}: {e}")
            outcome = DispatchOutcome.ERROR

        self._outcomes[outcome.value] = self._outcomes.get(outcome.value, 0) + 1
        return outcome

    def check_filters(self, event: InboundEvent) -> DispatchOutcome | None:
        """Stateless filter stages. Returns the rejection, if any."""
        if event.sender in self.ignored_contacts:
            return DispatchOutcome.IGNORED_CONTACT
        if event.is_group and self.config.filtering.ignore_groups:
            return DispatchOutcome.GROUP
        if event.is_broadcast:
            return DispatchOutcome.BROADCAST
        if event.from_me:
            return DispatchOutcome.FROM_SELF
        if not event.body or not event.body.strip():
            return DispatchOutcome.EMPTY
        return None

    async def _process(self, event: InboundEvent) -> DispatchOutcome:
        rejection = self.check_filters(event)
        if rejection:
            logger.debug(f"Message {event.id} from {event.sender} filtered: {rejection.value}")
            return rejection

        contact = event.sender
        conversation_id = conversation_id_for(contact)

        async with self._locks.hold(conversation_id):
            if not self.cooldowns.is_allowed(contact):
                logger.debug(f"Message {event.id} from {contact} filtered: cooldown")
                return DispatchOutcome.COOLDOWN

            self.memory.append(conversation_id, self._inbound_message(event))

            command_reply = await self.commands.route(event)
            if command_reply is None:
                if not self.commands.is_responses_enabled(contact):
                    logger.debug(f"Responses disabled for {contact}")
                    return DispatchOutcome.RESPONSES_DISABLED

                filtering = self.config.filtering
                if not self.cooldowns.check_frequency(
                    contact,
                    filtering.response_frequency_limit,
                    filtering.response_frequency_window_ms,
                ):
                    logger.debug(f"Response frequency limit reached for {contact}")
                    return DispatchOutcome.RATE_LIMITED

                context = self.memory.get_context(conversation_id)

        if command_reply is not None:
            await self._send(contact, command_reply)
            async with self._locks.hold(conversation_id):
                self.cooldowns.record_response(contact)
            return DispatchOutcome.COMMAND

        display_name = await self._resolve_display_name(contact)
        reply = await self.generator.generate(event.body, context, display_name)

        await self._send(contact, reply.text)

        async with self._locks.hold(conversation_id):
            self.memory.append(conversation_id, self._reply_message(reply.text))
            self.cooldowns.record_response(contact)

        return DispatchOutcome.REPLIED

    def _inbound_message(self, event: InboundEvent) -> Message:
        return Message(
            id=event.id,
            sender_id=event.sender,
            body=event.body,
            timestamp=event.timestamp,
            type=event.type,
            recorded_at=int(self._clock() * 1000),
        )

    def _reply_message(self, text: str) -> Message:
        now = self._clock()
        return Message(
            id=f"bot_{int(now * 1000)}",
            sender_id=BOT_SENDER_ID,
            body=text,
            timestamp=int(now),
            type="text",
            recorded_at=int(now * 1000),
        )

    async def _resolve_display_name(self, contact_id: str) -> str:
        if not self._contact_resolver:
            return DEFAULT_DISPLAY_NAME
        try:
            return await self._contact_resolver(contact_id) or DEFAULT_DISPLAY_NAME
        except Exception as e:
            logger.warning(f"Contact lookup failed for {contact_id}: {e}")
            return DEFAULT_DISPLAY_NAME

    async def _send(self, contact_id: str, text: str) -> bool:
        """Deliver a reply. Failures are logged, never retried."""
        delay_ms = self.config.bot.response_delay_ms
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

        if not self._response_sender:
            logger.warning(f"No response sender set, dropping reply to {contact_id}")
            return False

        try:
            delivered = await self._response_sender(contact_id, text)
        except Exception as e:
            logger.error(f"Error sending reply to {contact_id}: {e}")
            return False

        if delivered is False:
            logger.warning(f"Transport rejected reply to {contact_id}")
            return False

        logger.info(f"Reply sent to {contact_id} ({len(text)} chars)")
        return True

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_maintenance(self) -> dict[str, int]:
        """
        Evict stale cooldowns, preferences and conversations.

        Each key is re-checked under its lock so eviction never races
        with an event for the same contact.

        Returns:
            Counts of evicted entries per store.
        """
        maintenance = self.config.maintenance
        evicted = {"cooldowns": 0, "preferences": 0, "conversations": 0}

        for contact in self.cooldowns.stale_keys(maintenance.cooldown_max_age_ms):
            async with self._locks.hold(conversation_id_for(contact)):
                if self.cooldowns.is_stale(contact, maintenance.cooldown_max_age_ms):
                    self.cooldowns.evict(contact)
                    evicted["cooldowns"] += 1

        for contact in self.commands.stale_contacts(maintenance.preference_max_age_ms):
            async with self._locks.hold(conversation_id_for(contact)):
                if self.commands.is_stale(contact, maintenance.preference_max_age_ms):
                    self.commands.forget(contact)
                    evicted["preferences"] += 1

        max_age_ms = self.config.memory.max_conversation_age_ms
        for conversation_id in self.memory.stale_ids(max_age_ms):
            async with self._locks.hold(conversation_id):
                if self.memory.is_stale(conversation_id, max_age_ms):
                    self.memory.delete(conversation_id)
                    evicted["conversations"] += 1

        logger.info(
            f"Maintenance completed: {evicted['cooldowns']} cooldowns, "
            f"{evicted['preferences']} preferences, {evicted['conversations']} conversations evicted"
        )
        return evicted

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        return {
            "received_count": self._received_count,
            "dropped_count": self._dropped_count,
            "error_count": self._error_count,
            "outcomes": dict(self._outcomes),
            "running": self._running,
            "queue_size": self._queue.qsize(),
            "ignored_contacts": len(self.ignored_contacts),
            "cooldowns": self.cooldowns.get_stats(),
            "commands": self.commands.get_stats(),
            "memory": self.memory.get_stats(),
            "generation": self.generator.get_stats(),
        }
