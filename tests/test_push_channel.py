from __future__ import annotations

import asyncio
import json
import time

import pytest

from paysync._push import (
    DisabledPushChannel,
    MqttPushChannel,
    MqttRuntime,
    build_bootstrap,
    decode_push_message,
    encode_push_request,
)
from paysync.config import SyncConfig
from paysync.exceptions import PayloadError, PushChannelError
from paysync.models.envelope import PayloadKind, PushEnvelope
from paysync.state.events import ConnectionState


class _DummyRuntime:
    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.published: list[tuple[str, bytes]] = []
        self.stopped = False

    def publish(self, topic: str, payload: bytes) -> bool:
        if not self.accept:
            return False
        self.published.append((topic, payload))
        return True

    def stop(self) -> None:
        self.stopped = True


async def _token() -> str | None:
    return "id-token-1"


def _channel() -> tuple[MqttPushChannel, _DummyRuntime]:
    config = SyncConfig(mqtt_topic_prefix="wallet")
    channel = MqttPushChannel(config=config, user_id="u1", token_provider=_token)
    runtime = _DummyRuntime()
    # Bypass the broker connection; the channel only needs a runtime and bootstrap.
    channel._runtime = runtime  # type: ignore[assignment]
    channel._bootstrap = build_bootstrap(config, "u1", "id-token-1")  # type: ignore[attr-defined]
    return channel, runtime


def test_build_bootstrap_topics() -> None:
    bootstrap = build_bootstrap(SyncConfig(mqtt_topic_prefix="/wallet/", mqtt_tls=True), "u1", "tok")

    assert bootstrap.events_topic == "wallet/u1/events"
    assert bootstrap.requests_topic == "wallet/u1/requests"
    assert bootstrap.client_id.startswith("paysync_u1_")
    assert bootstrap.password == "tok"
    assert bootstrap.tls is True


def test_decode_push_message() -> None:
    envelope = decode_push_message(b'{"type": "initial_transactions", "payload": [{"id": "a", "timestamp": 1}]}')

    assert envelope.type == "initial_transactions"
    assert envelope.kind is None
    assert envelope.payload == [{"id": "a", "timestamp": 1}]

    with pytest.raises(PayloadError):
        decode_push_message(b"\x00not json")
    with pytest.raises(PayloadError):
        decode_push_message("[1, 2]")
    with pytest.raises(PayloadError):
        decode_push_message('{"payload": 1}')


def test_encode_push_request() -> None:
    body = encode_push_request("request_initial_transactions", {"filters": {"type": "Sent"}})

    assert json.loads(body) == {"type": "request_initial_transactions", "filters": {"type": "Sent"}}


@pytest.mark.asyncio
async def test_requests_are_queued_until_connected() -> None:
    channel, runtime = _channel()
    channel._state = ConnectionState.CONNECTING  # type: ignore[attr-defined]
    states: list[ConnectionState] = []
    channel.add_state_listener(states.append)

    assert channel.send("request_balance_update", {}) is False
    assert runtime.published == []

    channel._on_connected()  # type: ignore[attr-defined]

    assert states == [ConnectionState.READY]
    assert runtime.published == [("wallet/u1/requests", b'{"type":"request_balance_update"}')]
    assert channel.send("request_balance_update", {}) is True
    assert len(runtime.published) == 2


@pytest.mark.asyncio
async def test_dispatch_routes_by_type_and_isolates_failures() -> None:
    channel, _runtime = _channel()
    received: list[PushEnvelope] = []

    def broken(_envelope: PushEnvelope) -> None:
        raise RuntimeError("handler bug")

    channel.subscribe("balance_update", broken)
    unsubscribe = channel.subscribe("balance_update", received.append)

    channel._dispatch(PushEnvelope(type="balance_update", payload={"balance": 1}))  # type: ignore[attr-defined]
    channel._dispatch(PushEnvelope(type="transaction_update", kind=PayloadKind.DELTA))  # type: ignore[attr-defined]
    unsubscribe()
    channel._dispatch(PushEnvelope(type="balance_update", payload={"balance": 2}))  # type: ignore[attr-defined]

    assert [env.payload for env in received] == [{"balance": 1}]


@pytest.mark.asyncio
async def test_disconnect_moves_back_to_connecting() -> None:
    channel, _runtime = _channel()
    channel._on_connected()  # type: ignore[attr-defined]
    assert channel.state == ConnectionState.READY

    channel._on_disconnected()  # type: ignore[attr-defined]
    assert channel.state == ConnectionState.CONNECTING


@pytest.mark.asyncio
async def test_close_is_idempotent_and_final() -> None:
    channel, runtime = _channel()
    channel._on_connected()  # type: ignore[attr-defined]

    channel.close()
    channel.close()

    assert runtime.stopped is True
    assert channel.state == ConnectionState.DISCONNECTED
    with pytest.raises(PushChannelError):
        channel.subscribe("balance_update", lambda _env: None)
    with pytest.raises(PushChannelError):
        channel.send("request_balance_update", {})
    with pytest.raises(PushChannelError):
        channel.connect()


@pytest.mark.asyncio
async def test_connect_failure_returns_to_disconnected() -> None:
    async def no_token() -> str | None:
        return None

    channel = MqttPushChannel(config=SyncConfig(), user_id="u1", token_provider=no_token)
    states: list[ConnectionState] = []
    channel.add_state_listener(states.append)

    channel.connect()
    await asyncio.sleep(0.05)

    assert states == [ConnectionState.CONNECTING, ConnectionState.DISCONNECTED]
    channel.close()


@pytest.mark.asyncio
async def test_requests_sent_on_early_connack_are_flushed(monkeypatch) -> None:
    published: list[tuple[str, bytes]] = []

    def fast_start(self: MqttRuntime, _bootstrap: object) -> None:
        # Broker acknowledges before start() hands the runtime back.
        self._post(self._on_connected)
        time.sleep(0.05)

    def record(self: MqttRuntime, topic: str, payload: bytes) -> bool:
        published.append((topic, payload))
        return True

    monkeypatch.setattr(MqttRuntime, "start", fast_start)
    monkeypatch.setattr(MqttRuntime, "publish", record)
    monkeypatch.setattr(MqttRuntime, "stop", lambda self: None)

    channel = MqttPushChannel(config=SyncConfig(mqtt_topic_prefix="wallet"), user_id="u1", token_provider=_token)
    sent: list[bool] = []

    def on_state(state: ConnectionState) -> None:
        if state == ConnectionState.READY:
            sent.append(channel.send("request_balance_update", {}))

    channel.add_state_listener(on_state)
    channel.connect()
    await asyncio.sleep(0.2)

    assert channel.state == ConnectionState.READY
    assert sent == [False]
    assert published == [("wallet/u1/requests", b'{"type":"request_balance_update"}')]
    channel.close()


def test_disabled_channel_never_connects() -> None:
    channel = DisabledPushChannel()

    assert channel.state == ConnectionState.DISCONNECTED
    assert channel.send("request_balance_update", {}) is False
    with pytest.raises(PushChannelError):
        channel.connect()
    with pytest.raises(PushChannelError):
        channel.subscribe("balance_update", lambda _env: None)
