"""Tests for LifecycleController against fake realtime endpoints."""

import asyncio
import json
import time

import pytest
import pytest_asyncio

from voicelink.core.lifecycle import LifecycleController
from voicelink.core.session import EphemeralCredential, SessionState
from voicelink.exceptions import DeviceAccessDenied, SessionSuperseded, UpstreamUnavailable


def build_controller(realtime_fakes, logs, **kwargs) -> LifecycleController:
    return LifecycleController(
        realtime_fakes.settings,
        negotiator_factory=realtime_fakes.negotiator,
        on_log=logs.append,
        **kwargs,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def logs():
    return []


@pytest_asyncio.fixture
async def controller(realtime_fakes, logs):
    controller = build_controller(realtime_fakes, logs)
    yield controller
    await controller.close()


class TestConnect:
    """Connect outcomes."""

    @pytest.mark.asyncio
    async def test_connect_healthy(self, controller, realtime_fakes, logs):
        """Test a healthy connect ends CONNECTED with mic on and logs model/voice."""
        session = await controller.connect(model="m1", voice="v1")

        assert controller.state == SessionState.CONNECTED
        assert controller.session is session
        assert controller.mic_enabled is True
        assert realtime_fakes.captures[0].enabled is True
        started = [line for line in logs if line.startswith("Session started @ ")]
        assert len(started) == 1
        assert "model=m1" in started[0]
        assert "voice=v1" in started[0]

    @pytest.mark.asyncio
    async def test_defaults_from_settings(self, controller, realtime_fakes):
        session = await controller.connect()

        assert (session.model, session.voice) == ("gpt-realtime", "marin")

    @pytest.mark.asyncio
    async def test_session_update_advertises_tools(self, controller, realtime_fakes):
        await controller.connect()

        update = realtime_fakes.transports[0].sent[0]
        assert update["type"] == "session.update"
        assert [tool["name"] for tool in update["session"]["tools"]] == ["getTime"]

    @pytest.mark.asyncio
    async def test_broker_unreachable_stays_idle(self, controller, realtime_fakes, logs):
        """Test a broker failure is logged once and leaves the controller IDLE."""
        realtime_fakes.credentials.error = UpstreamUnavailable("Broker unreachable")

        with pytest.raises(UpstreamUnavailable):
            await controller.connect()

        assert controller.state == SessionState.IDLE
        assert controller.session is None
        assert [line for line in logs if line.startswith("Connect error:")] == [
            "Connect error: Broker unreachable"
        ]
        assert realtime_fakes.captures[0].closed is True
        assert controller.refresh_task is None

    @pytest.mark.asyncio
    async def test_device_denied_stays_idle(self, controller, realtime_fakes, logs):
        realtime_fakes.deny_capture = True

        with pytest.raises(DeviceAccessDenied):
            await controller.connect()

        assert controller.state == SessionState.IDLE
        assert any(line.startswith("Connect error:") for line in logs)

    @pytest.mark.asyncio
    async def test_connect_replaces_existing_session(self, controller, realtime_fakes):
        await controller.connect(model="m1", voice="v1")

        session = await controller.connect(model="m2", voice="v2")

        assert session.model == "m2"
        assert realtime_fakes.transports[0].closed is True
        assert realtime_fakes.captures[0].closed is True
        assert realtime_fakes.events.index("close:1") < realtime_fakes.events.index("open:2")


class TestConcurrentConnect:
    """Exactly one negotiation survives concurrent connects."""

    @pytest.mark.asyncio
    async def test_many_connects_one_session(self, controller, realtime_fakes):
        """Test N concurrent connects leave one CONNECTED session and one timer."""
        realtime_fakes.credentials.delay = 0.01

        results = await asyncio.gather(
            *(controller.connect(model=f"m{i}") for i in range(5)),
            return_exceptions=True,
        )

        sessions = [r for r in results if not isinstance(r, BaseException)]
        superseded = [r for r in results if isinstance(r, SessionSuperseded)]
        assert len(sessions) == 1
        assert len(superseded) == 4
        assert sessions[0].model == "m4"
        assert controller.state == SessionState.CONNECTED

        open_transports = [t for t in realtime_fakes.transports if not t.closed]
        assert len(open_transports) == 1

        await asyncio.sleep(0)
        refresh_tasks = [
            t for t in asyncio.all_tasks() if t.get_name() == "voicelink-refresh" and not t.done()
        ]
        assert refresh_tasks == [controller.refresh_task]

    @pytest.mark.asyncio
    async def test_superseded_negotiation_releases_resources(self, controller, realtime_fakes):
        """Test an in-flight connect is cancelled and its capture released."""
        realtime_fakes.credentials.delay = 0.5
        first = asyncio.create_task(controller.connect(model="slow"))
        await wait_until(lambda: realtime_fakes.credentials.requests)

        realtime_fakes.credentials.delay = 0
        session = await controller.connect(model="fast")

        with pytest.raises(SessionSuperseded):
            await first
        assert session.model == "fast"
        assert realtime_fakes.captures[0].closed is True
        assert realtime_fakes.captures[1].closed is False

    @pytest.mark.asyncio
    async def test_close_during_connect(self, controller, realtime_fakes):
        realtime_fakes.credentials.delay = 0.5
        pending = asyncio.create_task(controller.connect())
        await wait_until(lambda: realtime_fakes.credentials.requests)

        await controller.close()

        with pytest.raises(SessionSuperseded):
            await pending
        assert controller.state == SessionState.IDLE
        assert realtime_fakes.captures[0].closed is True


class TestRefresh:
    """Credential refresh before expiry."""

    def test_refresh_delay_uses_expiry(self, realtime_fakes, logs):
        """Test the delay is expiry minus the safety margin."""
        now = 1_000_000.0
        controller = build_controller(realtime_fakes, logs, clock=lambda: now)
        credential = EphemeralCredential(secret="ek", expires_at=now + 60, model="m", voice="v")

        assert controller.refresh_delay(credential) == pytest.approx(50.0)

    def test_refresh_delay_floor(self, realtime_fakes, logs):
        now = 1_000_000.0
        controller = build_controller(realtime_fakes, logs, clock=lambda: now)
        credential = EphemeralCredential(secret="ek", expires_at=now + 3, model="m", voice="v")

        assert controller.refresh_delay(credential) == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_refresh_replaces_transport_and_keeps_mic(
        self, settings_factory, realtime_fakes, logs
    ):
        """Test near-expiry refresh closes the old transport first and keeps the mic flag."""
        realtime_fakes.settings = settings_factory(
            refresh_safety_margin_seconds=120.0, refresh_min_delay_seconds=0.05
        )
        controller = build_controller(realtime_fakes, logs)
        try:
            await controller.connect(model="m1", voice="v1")
            controller.set_mic(False)

            await wait_until(
                lambda: sum(line.startswith("Session started") for line in logs) >= 2
            )

            assert realtime_fakes.events[:5] == ["open:1", "ready:1", "close:1", "open:2", "ready:2"]
            assert len(realtime_fakes.credentials.requests) >= 2
            assert realtime_fakes.credentials.requests[1][1:] == ("m1", "v1")
            assert realtime_fakes.captures[1].enabled is False
            assert any(line.startswith("Refreshing session") for line in logs)
        finally:
            await controller.close()

    @pytest.mark.asyncio
    async def test_connect_cancels_pending_refresh(self, controller):
        await controller.connect()
        first_timer = controller.refresh_task

        await controller.connect()
        await asyncio.sleep(0)

        assert first_timer.cancelled()
        assert controller.refresh_task is not first_timer
        assert not controller.refresh_task.done()


class TestControls:
    """Mic, reconnect and close."""

    @pytest.mark.asyncio
    async def test_toggle_mic_connects_when_idle(self, controller):
        enabled = await controller.toggle_mic()

        assert enabled is True
        assert controller.state == SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_toggle_mic_flips_without_renegotiation(self, controller, realtime_fakes):
        await controller.connect()

        assert await controller.toggle_mic() is False
        assert realtime_fakes.captures[0].enabled is False
        assert await controller.toggle_mic() is True
        assert realtime_fakes.captures[0].enabled is True
        assert len(realtime_fakes.signaling.calls) == 1

    @pytest.mark.asyncio
    async def test_reconnect_keeps_model_and_voice(self, controller, realtime_fakes, logs):
        await controller.connect(model="m1", voice="v1")

        session = await controller.reconnect()

        assert (session.model, session.voice) == ("m1", "v1")
        assert realtime_fakes.transports[0].closed is True
        assert any(line.startswith("Reconnecting") for line in logs)

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, controller, realtime_fakes):
        await controller.connect()
        timer = controller.refresh_task

        await controller.close()
        await asyncio.sleep(0)

        assert controller.state == SessionState.IDLE
        assert controller.mic_enabled is False
        assert realtime_fakes.transports[0].closed is True
        assert realtime_fakes.captures[0].closed is True
        assert timer.cancelled()
        assert controller.channel.running is False

    @pytest.mark.asyncio
    async def test_async_context_manager(self, realtime_fakes, logs):
        async with build_controller(realtime_fakes, logs) as controller:
            await controller.connect()

        assert controller.state == SessionState.IDLE
        assert realtime_fakes.transports[0].closed is True


class TestInboundEvents:
    """Events arriving over the live transport."""

    @pytest.mark.asyncio
    async def test_transcripts_reach_sink(self, realtime_fakes, logs):
        entries = []
        controller = build_controller(realtime_fakes, logs, on_transcript=entries.append)
        try:
            await controller.connect()
            transport = realtime_fakes.transports[0]

            transport.on_message(
                json.dumps({"type": "response.audio_transcript.delta", "delta": "It is ", "item_id": "a"})
            )
            transport.on_message(
                json.dumps({"type": "response.audio_transcript.done", "transcript": "It is noon.", "item_id": "a"})
            )
            transport.on_message(
                json.dumps({"type": "response.audio_transcript.done", "transcript": "It is noon.", "item_id": "a"})
            )
            await controller.channel.join()

            assert [e.text for e in controller.transcript.final_entries()] == ["It is noon."]
            assert entries[-1].final is True
        finally:
            await controller.close()

    @pytest.mark.asyncio
    async def test_tool_call_answered_over_transport(self, controller, realtime_fakes, logs):
        """Test a remote getTime call is answered with function_call_output."""
        await controller.connect()
        transport = realtime_fakes.transports[0]

        transport.on_message(
            json.dumps(
                {
                    "type": "response.function_call_arguments.done",
                    "name": "getTime",
                    "arguments": json.dumps({"timezone": "UTC"}),
                    "call_id": "call_1",
                }
            )
        )
        await controller.channel.join()

        output = next(e for e in transport.sent if e["type"] == "conversation.item.create")
        assert output["item"]["call_id"] == "call_1"
        assert "iso" in json.loads(output["item"]["output"])
        assert transport.sent[-1] == {"type": "response.create"}
        assert any(line.startswith("Tool getTime") for line in logs)

    @pytest.mark.asyncio
    async def test_error_event_logged(self, controller, realtime_fakes, logs):
        await controller.connect()

        realtime_fakes.transports[0].on_message(
            json.dumps({"type": "error", "error": {"message": "bad request"}})
        )
        await controller.channel.join()

        assert "Error: bad request" in logs

    @pytest.mark.asyncio
    async def test_session_is_none_when_idle(self, controller, realtime_fakes):
        assert controller.session is None

        await controller.connect()
        await controller.close()

        assert controller.session is None

    @pytest.mark.asyncio
    async def test_send_without_session_dropped(self, controller):
        controller.send({"type": "response.create"})

        assert controller.state == SessionState.IDLE


def test_credential_expiry_is_future():
    credential = EphemeralCredential(secret="s", expires_at=time.time() + 5, model="m", voice="v")

    assert credential.seconds_remaining() > 0
