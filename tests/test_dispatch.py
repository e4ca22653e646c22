"""
Tests for the auto-reply dispatch pipeline.

Tests:
- Filter chain short-circuits
- Command handling and opt-out
- Generation failures and send failures
- Queue loop and maintenance
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from replybot.agent.context import BOT_SENDER_ID
from replybot.agent.responder import FALLBACK_RESPONSES
from replybot.auto_reply.dispatch import DispatchOutcome
from replybot.auto_reply.maintenance import MaintenanceService
from replybot.memory.conversation import conversation_id_for

from conftest import make_event


CONTACT = "15550001111@c.us"
CONVERSATION = conversation_id_for(CONTACT)

DAY = 24 * 60 * 60


class TestFilterChain:
    """Tests for events rejected before any state is touched."""

    @pytest.mark.asyncio
    async def test_group_event_never_reaches_router_or_memory(self, pipeline, provider, channel):
        """Test that group messages are dropped when ignore_groups is set."""
        with patch.object(pipeline.commands, "route", new=AsyncMock()) as route:
            outcome = await pipeline.handle_event(make_event("/stop", sender="1203630@g.us"))

        assert outcome == DispatchOutcome.GROUP
        route.assert_not_called()
        assert pipeline.memory.conversation_ids() == []
        assert provider.calls == []
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_group_event_handled_when_groups_allowed(self, pipeline, config):
        """Test that groups go through when ignore_groups is off."""
        config.filtering.ignore_groups = False
        outcome = await pipeline.handle_event(make_event("hello all", sender="1203630@g.us"))
        assert outcome == DispatchOutcome.REPLIED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event, expected",
        [
            (make_event("hi", sender="status@broadcast"), DispatchOutcome.BROADCAST),
            (make_event("hi", from_me=True), DispatchOutcome.FROM_SELF),
            (make_event(""), DispatchOutcome.EMPTY),
            (make_event("   \n "), DispatchOutcome.EMPTY),
        ],
    )
    async def test_rejected_events(self, pipeline, channel, event, expected):
        """Test broadcast, self-sent and empty events."""
        assert await pipeline.handle_event(event) == expected
        assert channel.sent == []
        assert not pipeline.memory.has_conversation(CONVERSATION)

    @pytest.mark.asyncio
    async def test_ignored_contact(self, pipeline, channel):
        """Test runtime ignore list edits."""
        pipeline.add_ignored_contact(CONTACT)
        assert await pipeline.handle_event(make_event("hi")) == DispatchOutcome.IGNORED_CONTACT

        pipeline.remove_ignored_contact(CONTACT)
        assert await pipeline.handle_event(make_event("hi")) == DispatchOutcome.REPLIED
        assert len(channel.sent) == 1

    def test_configured_ignore_list(self, config, pipeline):
        """Test that the ignore list is seeded from configuration."""
        assert pipeline.ignored_contacts == set(config.filtering.ignored_contacts)

    @pytest.mark.asyncio
    async def test_short_cooldown_drops_second_message(self, pipeline, channel, clock):
        """Test that a message right after a reply is not processed."""
        assert await pipeline.handle_event(make_event("first")) == DispatchOutcome.REPLIED
        assert await pipeline.handle_event(make_event("second")) == DispatchOutcome.COOLDOWN

        # The rejected message is not recorded
        context = pipeline.memory.get_context(CONVERSATION)
        assert [m.body for m in context.messages][0] == "first"
        assert context.total_messages == 2
        assert len(channel.sent) == 1

        clock.advance(2)
        assert await pipeline.handle_event(make_event("third")) == DispatchOutcome.REPLIED


class TestReplies:
    """Tests for generated replies."""

    @pytest.mark.asyncio
    async def test_reply_sent_and_recorded(self, pipeline, provider, channel):
        """Test that a plain message produces one reply stored as the bot's turn."""
        outcome = await pipeline.handle_event(make_event("What time is dinner?"))

        assert outcome == DispatchOutcome.REPLIED
        assert channel.sent == [(CONTACT, provider.reply)]

        context = pipeline.memory.get_context(CONVERSATION)
        assert [m.sender_id for m in context.messages] == [CONTACT, BOT_SENDER_ID]
        bot_message = context.messages[-1]
        assert bot_message.body == provider.reply
        assert bot_message.type == "text"
        assert bot_message.id.startswith("bot_")

    @pytest.mark.asyncio
    async def test_display_name_from_channel(self, pipeline, provider):
        """Test that the contact name reaches the prompt."""
        await pipeline.handle_event(make_event("hey"))
        user_prompt = provider.calls[0][-1]["content"]
        assert 'Current message from Alice: "hey"' in user_prompt

    @pytest.mark.asyncio
    async def test_unknown_contact_name_defaults_to_user(self, pipeline, provider):
        """Test the default display name."""
        await pipeline.handle_event(make_event("hey", sender="15559998888@c.us"))
        assert 'Current message from User: "hey"' in provider.calls[0][-1]["content"]

    @pytest.mark.asyncio
    async def test_previous_turns_in_prompt(self, pipeline, provider, clock):
        """Test that earlier turns are included as context."""
        await pipeline.handle_event(make_event("I love pizza"))
        clock.advance(2)
        await pipeline.handle_event(make_event("What should I eat?"))

        prompt = provider.calls[1][-1]["content"]
        assert "Recent conversation:" in prompt
        assert "User: I love pizza" in prompt
        assert f"Assistant: {provider.reply}" in prompt

    @pytest.mark.asyncio
    async def test_provider_error_sends_fallback(self, pipeline, provider, channel):
        """Test that a throwing provider yields a fallback that is sent and stored."""
        provider.error = RuntimeError("provider down")

        outcome = await pipeline.handle_event(make_event("hello?"))

        assert outcome == DispatchOutcome.REPLIED
        assert len(channel.sent) == 1
        sent_text = channel.sent[0][1]
        assert sent_text in FALLBACK_RESPONSES

        last = pipeline.memory.get_context(CONVERSATION).messages[-1]
        assert last.sender_id == BOT_SENDER_ID
        assert last.body == sent_text
        assert pipeline.generator.get_stats()["fallback_count"] == 1

    @pytest.mark.asyncio
    async def test_send_failure_still_records_reply(self, pipeline, channel):
        """Test that a failing transport is logged, not retried."""
        channel.fail = True

        outcome = await pipeline.handle_event(make_event("hello"))

        assert outcome == DispatchOutcome.REPLIED
        assert channel.sent == []
        context = pipeline.memory.get_context(CONVERSATION)
        assert context.messages[-1].sender_id == BOT_SENDER_ID
        assert not pipeline.cooldowns.is_allowed(CONTACT)

    @pytest.mark.asyncio
    async def test_response_delay(self, pipeline, config):
        """Test that the configured delay is applied before sending."""
        config.bot.response_delay_ms = 250
        with patch("replybot.auto_reply.dispatch.asyncio.sleep", new=AsyncMock()) as sleep:
            await pipeline.handle_event(make_event("hello"))
        sleep.assert_awaited_once_with(0.25)

    @pytest.mark.asyncio
    async def test_frequency_limit(self, pipeline, config, channel, clock, provider):
        """Test the sliding window limit and its recovery."""
        config.filtering.response_frequency_limit = 2

        for _ in range(2):
            assert await pipeline.handle_event(make_event("ping")) == DispatchOutcome.REPLIED
            clock.advance(2)

        assert await pipeline.handle_event(make_event("ping")) == DispatchOutcome.RATE_LIMITED
        assert len(channel.sent) == 2
        assert len(provider.calls) == 2

        clock.advance(61)
        assert await pipeline.handle_event(make_event("ping")) == DispatchOutcome.REPLIED

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, pipeline, clock):
        """Test that a crash in one event does not affect the next."""
        with patch.object(pipeline.commands, "route", new=AsyncMock(side_effect=RuntimeError("boom"))):
            assert await pipeline.handle_event(make_event("hello")) == DispatchOutcome.ERROR

        clock.advance(2)
        assert await pipeline.handle_event(make_event("hello again")) == DispatchOutcome.REPLIED
        assert pipeline.get_stats()["error_count"] == 1


class TestCommands:
    """Tests for command handling inside the pipeline."""

    @pytest.mark.asyncio
    async def test_command_does_not_generate(self, pipeline, provider, channel):
        """Test that a command is answered without calling the provider."""
        outcome = await pipeline.handle_event(make_event("/help"))

        assert outcome == DispatchOutcome.COMMAND
        assert provider.calls == []
        assert "Bot Commands" in channel.sent[0][1]
        assert not pipeline.cooldowns.is_allowed(CONTACT)

    @pytest.mark.asyncio
    async def test_command_message_is_recorded(self, pipeline):
        """Test that commands are kept in the history but replies to them are not."""
        await pipeline.handle_event(make_event("/status"))
        context = pipeline.memory.get_context(CONVERSATION)
        assert [m.body for m in context.messages] == ["/status"]

    @pytest.mark.asyncio
    async def test_stop_then_start(self, pipeline, provider, channel, clock):
        """Test that /stop suppresses replies until /start."""
        assert await pipeline.handle_event(make_event("/stop")) == DispatchOutcome.COMMAND
        assert "Auto-responses disabled" in channel.sent[-1][1]

        clock.advance(2)
        assert await pipeline.handle_event(make_event("are you there?")) == DispatchOutcome.RESPONSES_DISABLED
        assert provider.calls == []
        assert len(channel.sent) == 1

        clock.advance(2)
        assert await pipeline.handle_event(make_event("/start")) == DispatchOutcome.COMMAND
        assert "Auto-responses enabled" in channel.sent[-1][1]

        clock.advance(2)
        assert await pipeline.handle_event(make_event("are you there?")) == DispatchOutcome.REPLIED
        assert len(provider.calls) == 1
        assert channel.sent[-1] == (CONTACT, provider.reply)

    @pytest.mark.asyncio
    async def test_unknown_command(self, pipeline, provider, channel):
        """Test that unknown commands get a help hint instead of a reply."""
        assert await pipeline.handle_event(make_event("/dance")) == DispatchOutcome.COMMAND
        assert channel.sent[0][1].startswith("❌ Unknown command: dance")
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_commands_disabled(self, pipeline, config, provider):
        """Test that command text is treated as chat when commands are off."""
        pipeline.commands.enabled = False
        assert await pipeline.handle_event(make_event("/help")) == DispatchOutcome.REPLIED
        assert len(provider.calls) == 1


class TestSummarization:
    """Tests for memory compaction driven by the pipeline."""

    @pytest.mark.asyncio
    async def test_long_conversation_is_summarized(self, pipeline, clock):
        """Test that the retained history stays bounded."""
        for i in range(8):
            await pipeline.handle_event(make_event(f"tell me about pizza {i}"))
            clock.advance(2)

        # 16 messages: one summarizing pass at the 10th, six retained since
        retained = pipeline.memory.get_context(CONVERSATION, max_messages=100)
        summary = pipeline.memory.get_summary(CONVERSATION)

        assert retained.total_messages == 16
        assert len(retained.messages) == 6
        assert summary is not None
        assert summary.message_count == 10
        assert len(pipeline.memory.get_context(CONVERSATION).messages) == 5
        assert "pizza" in summary.key_topics


class TestQueue:
    """Tests for the single-worker queue loop."""

    @pytest.mark.asyncio
    async def test_events_processed_in_order(self, pipeline, channel, config):
        """Test that submitted events are handled in arrival order."""
        config.filtering.short_cooldown_ms = 0
        pipeline.cooldowns.short_cooldown_ms = 0

        worker = asyncio.create_task(pipeline.start())
        for sender in ("111@c.us", "222@c.us", "333@c.us"):
            await channel.receive(make_event("hello", sender=sender))

        await asyncio.wait_for(pipeline.drain(), timeout=5)
        pipeline.stop()
        await asyncio.wait_for(worker, timeout=5)

        assert [contact for contact, _ in channel.sent] == ["111@c.us", "222@c.us", "333@c.us"]
        assert pipeline.get_stats()["outcomes"] == {"replied": 3}

    @pytest.mark.asyncio
    async def test_full_queue_drops_event(self, config, pipeline):
        """Test that submit reports a full queue."""
        pipeline._queue = asyncio.Queue(maxsize=1)
        assert await pipeline.submit(make_event("one")) is True
        assert await pipeline.submit(make_event("two")) is False
        assert pipeline.get_stats()["dropped_count"] == 1


class TestMaintenance:
    """Tests for eviction of stale state."""

    @pytest.mark.asyncio
    async def test_fresh_state_survives(self, pipeline):
        """Test that maintenance leaves recent state alone."""
        await pipeline.handle_event(make_event("/stop"))
        evicted = await pipeline.run_maintenance()
        assert evicted == {"cooldowns": 0, "preferences": 0, "conversations": 0}

    @pytest.mark.asyncio
    async def test_stale_state_evicted(self, pipeline, clock, store):
        """Test eviction of cooldowns, preferences and conversations by age."""
        await pipeline.handle_event(make_event("/stop"))
        assert store.conversation_path(CONVERSATION).exists()

        clock.advance(2 * DAY)
        evicted = await pipeline.run_maintenance()
        assert evicted == {"cooldowns": 1, "preferences": 0, "conversations": 0}

        clock.advance(6 * DAY)
        evicted = await pipeline.run_maintenance()
        assert evicted == {"cooldowns": 0, "preferences": 1, "conversations": 0}
        # Forgotten preference falls back to the global default
        assert pipeline.commands.is_responses_enabled(CONTACT)

        clock.advance(23 * DAY)
        evicted = await pipeline.run_maintenance()
        assert evicted == {"cooldowns": 0, "preferences": 0, "conversations": 1}
        assert not pipeline.memory.has_conversation(CONVERSATION)
        assert not store.conversation_path(CONVERSATION).exists()

    @pytest.mark.asyncio
    async def test_service_run_once(self, pipeline, clock):
        """Test a manual pass through the maintenance service."""
        await pipeline.handle_event(make_event("hello"))
        clock.advance(2 * DAY)

        service = MaintenanceService(pipeline, every_seconds=3600)
        result = await service.run_once()

        assert result["cooldowns"] == 1
        assert service.get_stats()["runs"] == 1

    @pytest.mark.asyncio
    async def test_service_start_stop(self, pipeline):
        """Test that the background loop starts and stops cleanly."""
        service = MaintenanceService(pipeline, every_seconds=3600)
        await service.start()
        assert service.is_running
        await service.stop()
        assert not service.is_running
