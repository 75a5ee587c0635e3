"""Tests for the shared chat adapter contract."""

import asyncio
from typing import Optional

import pytest

from livechat.services.chat_adapters.base import (
    ChatAdapter,
    ChatEventType,
    ChatMessage,
    ConnectionState,
    PollingChatAdapter,
)
from livechat.services.chat_adapters.exceptions import (
    ApiError,
    ChatConnectionError,
    ConfigError,
    CredentialsExpiredError,
    NotConnectedError,
    WritePermissionDenied,
)


class DummyAdapter(ChatAdapter):
    name = "Dummy"
    key = "dummy"
    required_config = ("token",)
    default_config = {"interval": 100}

    def __init__(self, *args, open_error: Optional[Exception] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.open_error = open_error
        self.opened = 0
        self.closed = 0
        self.sent = []

    async def _open(self):
        self.opened += 1
        if self.open_error:
            raise self.open_error

    async def _close(self):
        self.closed += 1

    async def _send(self, message):
        self.sent.append(message)
        return {"ok": True}


class DummyPoller(PollingChatAdapter):
    name = "Poller"
    key = "poller"
    default_config = {"interval": 5000}

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.results = []
        self.polls = 0

    async def _open(self):
        pass

    async def _close(self):
        pass

    async def _poll_once(self):
        self.polls += 1
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return result


def message(item_id="1", body="hello"):
    return ChatMessage(id=item_id, username="user", body=body, raw=body, timestamp=0)


class TestChatAdapterLifecycle:
    """Test cases for connect/disconnect/send."""

    @pytest.mark.asyncio
    async def test_connect_requires_config(self, test_settings):
        adapter = DummyAdapter(settings=test_settings)

        with pytest.raises(ConfigError, match="token"):
            await adapter.connect()

        assert adapter.state is ConnectionState.DISCONNECTED
        assert adapter.opened == 0

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, test_settings, recorder):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        recorder.listen(adapter, ChatEventType.CONNECTED, ChatEventType.DISCONNECTED)

        await adapter.connect()
        assert adapter.state is ConnectionState.CONNECTED
        assert adapter.is_connected

        await adapter.disconnect()
        assert adapter.state is ConnectionState.DISCONNECTED
        assert recorder.names() == ["connected", "disconnected"]
        assert adapter.closed == 1

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)

        await adapter.connect()
        await adapter.connect()

        assert adapter.opened == 1

    @pytest.mark.asyncio
    async def test_disconnect_when_disconnected_is_noop(self, test_settings, recorder):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        recorder.listen(adapter, ChatEventType.DISCONNECTED)

        await adapter.disconnect()

        assert recorder.events == []
        assert adapter.closed == 0

    @pytest.mark.asyncio
    async def test_connect_failure_is_wrapped_and_emitted(self, test_settings, recorder):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings, open_error=OSError("boom"))
        recorder.listen(adapter, ChatEventType.ERROR)

        with pytest.raises(ChatConnectionError):
            await adapter.connect()

        assert adapter.state is ConnectionState.DISCONNECTED
        assert adapter.closed == 1
        assert isinstance(recorder.of(ChatEventType.ERROR)[0], ChatConnectionError)

    @pytest.mark.asyncio
    async def test_library_errors_are_raised_as_is(self, test_settings):
        error = WritePermissionDenied("nope")
        adapter = DummyAdapter({"token": "t"}, settings=test_settings, open_error=error)

        with pytest.raises(WritePermissionDenied) as exc_info:
            await adapter.connect()

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_send_requires_connection(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)

        with pytest.raises(NotConnectedError):
            await adapter.send("hi")

    @pytest.mark.asyncio
    async def test_send_returns_acknowledgement(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        await adapter.connect()

        assert await adapter.send("hi") == {"ok": True}
        assert adapter.sent == ["hi"]

    @pytest.mark.asyncio
    async def test_async_context_manager(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)

        async with adapter as connected:
            assert connected.is_connected

        assert adapter.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_resets_backoff(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        adapter.backoff.increase()

        await adapter.connect()

        assert adapter.backoff.attempt == 0
        assert adapter.backoff.current_interval_ms == adapter.backoff.default_interval_ms

    @pytest.mark.asyncio
    async def test_disconnect_clears_dedup(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        await adapter.connect()
        await adapter._emit_message(ChatEventType.MESSAGE, message("1"))

        await adapter.disconnect()

        assert len(adapter.dedup) == 0


class TestChatAdapterEvents:
    """Test cases for the event bus."""

    @pytest.mark.asyncio
    async def test_multiple_listeners_in_order(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        calls = []
        adapter.on("message", lambda m: calls.append(("first", m.id)))
        adapter.on(ChatEventType.MESSAGE, lambda m: calls.append(("second", m.id)))

        await adapter.emit(ChatEventType.MESSAGE, message("7"))

        assert calls == [("first", "7"), ("second", "7")]

    @pytest.mark.asyncio
    async def test_on_accepts_a_list_of_events(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        calls = []
        adapter.on(["connected", "disconnected"], lambda _: calls.append(1))

        await adapter.connect()
        await adapter.disconnect()

        assert calls == [1, 1]

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        calls = []

        async def callback(data):
            await asyncio.sleep(0)
            calls.append(data)

        adapter.on("user-join", callback)
        await adapter.emit("user-join", {"username": "x"})

        assert calls == [{"username": "x"}]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_delivery(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        calls = []

        def broken(_):
            raise RuntimeError("broken")

        adapter.on("message", broken)
        adapter.on("message", calls.append)

        await adapter.emit("message", "payload")

        assert calls == ["payload"]

    @pytest.mark.asyncio
    async def test_off(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        calls = []
        adapter.on("message", calls.append)
        adapter.off("message", calls.append)

        await adapter.emit("message", "payload")

        assert calls == []
        assert adapter.listeners("message") == []

    def test_unknown_event_rejected(self, test_settings):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)

        with pytest.raises(ValueError):
            adapter.on("not-an-event", print)

    @pytest.mark.asyncio
    async def test_duplicate_messages_dropped(self, test_settings, recorder):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        recorder.listen(adapter, ChatEventType.MESSAGE)

        assert await adapter._emit_message(ChatEventType.MESSAGE, message("1")) is True
        assert await adapter._emit_message(ChatEventType.MESSAGE, message("1")) is False

        assert len(recorder.of(ChatEventType.MESSAGE)) == 1

    @pytest.mark.asyncio
    async def test_report_error_classifies_auth_errors(self, test_settings, recorder):
        adapter = DummyAdapter({"token": "t"}, settings=test_settings)
        recorder.listen(adapter, ChatEventType.ERROR, ChatEventType.CREDENTIALS_EXPIRED)

        await adapter._report_error(ApiError(401, {"error": {"code": 401}}))
        await adapter._report_error(ApiError(500, None))

        expired = recorder.of(ChatEventType.CREDENTIALS_EXPIRED)
        assert len(expired) == 1
        assert isinstance(expired[0], CredentialsExpiredError)
        assert isinstance(recorder.of(ChatEventType.ERROR)[0], ApiError)


class TestChatAdapterConfig:
    """Test cases for config and capability accessors."""

    def test_defaults_and_overrides(self, test_settings):
        adapter = DummyAdapter({"token": "t", "interval": 300}, settings=test_settings)

        assert adapter.get_config("interval") == 300
        assert adapter.get_config("missing", "x") == "x"
        assert adapter.get_config() == {"interval": 300, "token": "t"}

    def test_set_config_mapping(self, test_settings):
        adapter = DummyAdapter(settings=test_settings)

        adapter.set_config({"token": "t", "parseUrl": False})

        assert adapter.get_config("token") == "t"
        assert adapter.should_parse_urls() is False

    def test_pipeline_flags(self, test_settings):
        adapter = DummyAdapter({"formatMessages": False}, settings=test_settings)

        pipeline = adapter.build_pipeline()

        assert pipeline.escape is True
        assert pipeline.linkify is False

    def test_pipeline_uses_configured_emoticons(self, test_settings):
        adapter = DummyAdapter({"emoticons": {":)": "https://cdn.example.com/s.png"}}, settings=test_settings)

        assert "cdn.example.com/s.png" in adapter.build_pipeline().render("hey :)")

    def test_capabilities(self, test_settings):
        adapter = DummyAdapter(settings=test_settings)

        assert adapter.get_name() == "Dummy"
        assert adapter.get_key() == "dummy"
        assert adapter.has_emoticons() is False
        assert adapter.has_writing() is False
        assert adapter.is_live() is False


class TestPollingChatAdapter:
    """Test cases for the polling loop."""

    @pytest.mark.parametrize("suggested,expected", [
        (None, 5000),
        (2000, 5000),
        (9000, 9000),
    ])
    def test_poll_delay(self, test_settings, suggested, expected):
        adapter = DummyPoller(settings=test_settings)

        assert adapter.poll_delay_ms(suggested) == expected

    @pytest.mark.asyncio
    async def test_first_cycle_runs_on_connect_and_next_is_scheduled(self, test_settings):
        adapter = DummyPoller(settings=test_settings)
        adapter.results = [9000]

        await adapter.connect()

        assert adapter.polls == 1
        assert adapter._poll_timer.pending
        await adapter.disconnect()
        assert not adapter._poll_timer.pending

    @pytest.mark.asyncio
    async def test_loop_runs_repeatedly(self, test_settings, wait_for):
        adapter = DummyPoller({"interval": 5}, settings=test_settings)

        await adapter.connect()
        await wait_for(lambda: adapter.polls >= 3)

        await adapter.disconnect()

    @pytest.mark.asyncio
    async def test_error_stops_loop_until_resume(self, test_settings, recorder):
        adapter = DummyPoller(settings=test_settings)
        adapter.results = [CredentialsExpiredError("expired")]
        recorder.listen(adapter, ChatEventType.CREDENTIALS_EXPIRED, ChatEventType.ERROR)

        await adapter.connect()

        assert adapter.state is ConnectionState.CONNECTED
        assert adapter.stalled
        assert not adapter._poll_timer.pending
        assert len(recorder.of(ChatEventType.CREDENTIALS_EXPIRED)) == 1

        await adapter.resume()

        assert adapter.polls == 2
        assert not adapter.stalled
        assert adapter._poll_timer.pending
        await adapter.disconnect()

    @pytest.mark.asyncio
    async def test_resume_is_noop_while_running(self, test_settings):
        adapter = DummyPoller(settings=test_settings)
        await adapter.connect()

        await adapter.resume()

        assert adapter.polls == 1
        await adapter.disconnect()
