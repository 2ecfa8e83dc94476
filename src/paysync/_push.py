"""Push channel: protocol, envelope codec and the paho-mqtt implementation.

The broker side is per user: inbound messages arrive on
``<prefix>/<user_id>/events`` and initial-data requests are published to
``<prefix>/<user_id>/requests``. Each MQTT payload is a JSON envelope
``{"type": ..., "kind": ..., "payload": ...}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from paysync._redact import redact_for_log
from paysync._transport import TokenProvider
from paysync.config import SyncConfig
from paysync.exceptions import PayloadError, PushChannelError
from paysync.models.envelope import PushEnvelope
from paysync.state.events import ConnectionState

MessageHandler = Callable[[PushEnvelope], None]
StateListener = Callable[[ConnectionState], None]

_OUTBOX_LIMIT = 100


class PushChannel(Protocol):
    """Shared push transport of one session."""

    @property
    def state(self) -> ConnectionState: ...

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def subscribe(self, message_type: str, handler: MessageHandler) -> Callable[[], None]: ...

    def send(self, message_type: str, request: dict[str, Any]) -> bool: ...

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]: ...


PushChannelFactory = Callable[[str], PushChannel]
"""Builds the (unopened) push channel for a user id."""


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker/session data required to connect."""

    user_id: str
    broker_host: str
    broker_port: int
    events_topic: str
    requests_topic: str
    client_id: str
    username: str
    password: str
    tls: bool
    keepalive: int


def build_bootstrap(config: SyncConfig, user_id: str, token: str) -> MqttBootstrap:
    prefix = config.mqtt_topic_prefix.strip("/")
    return MqttBootstrap(
        user_id=user_id,
        broker_host=config.mqtt_host,
        broker_port=config.mqtt_port,
        events_topic=f"{prefix}/{user_id}/events",
        requests_topic=f"{prefix}/{user_id}/requests",
        client_id=f"paysync_{user_id}_{secrets.token_hex(4)}",
        username=user_id,
        password=token,
        tls=config.mqtt_tls,
        keepalive=config.mqtt_keepalive,
    )


def decode_push_message(payload: bytes | str) -> PushEnvelope:
    """Parse raw MQTT payload bytes into an envelope."""
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PayloadError(f"push payload is not JSON: {text[:64]!r}") from exc
    if not isinstance(parsed, dict):
        raise PayloadError("push payload decoded to non-object JSON")
    try:
        return PushEnvelope.model_validate(parsed)
    except ValidationError as exc:
        raise PayloadError(f"invalid push envelope: {exc.errors()[0]['msg']}") from exc


def encode_push_request(message_type: str, request: dict[str, Any]) -> bytes:
    body = {"type": message_type, **request}
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


class MqttRuntime:
    """Threaded paho-mqtt runtime that emits envelopes onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_envelope: Callable[[PushEnvelope], None],
        on_connected: Callable[[], None],
        on_disconnected: Callable[[], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_envelope = on_envelope
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Event loop already closed; nothing left to notify.
            self._logger.debug("Dropping MQTT callback, event loop closed")

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Connect and subscribe with provided broker details (blocking)."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            bootstrap.events_topic,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        client.username_pw_set(bootstrap.username, bootstrap.password)
        client.reconnect_delay_set(min_delay=1, max_delay=30)
        if bootstrap.tls:
            client.tls_set()

        self._topic = bootstrap.events_topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            if self._topic:
                c.subscribe(self._topic, qos=1)
            self._post(self._on_connected)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                envelope = decode_push_message(msg.payload)
            except PayloadError as exc:
                self._logger.warning("Dropping undecodable push message on %s: %s", msg.topic, exc)
                return
            self._logger.debug(
                "Received PUBLISH topic=%s type=%s payload=%s",
                msg.topic,
                envelope.type,
                redact_for_log(envelope.payload),
            )
            self._post(self._on_envelope, envelope)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._post(self._on_disconnected)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(bootstrap.broker_host, bootstrap.broker_port, keepalive=bootstrap.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def publish(self, topic: str, payload: bytes) -> bool:
        client = self._client
        if client is None or not self._running:
            return False
        info = client.publish(topic, payload, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("MQTT publish to %s failed rc=%s", topic, info.rc)
            return False
        return True

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")


class MqttPushChannel:
    """:class:`PushChannel` backed by :class:`MqttRuntime`.

    Lives on the event loop; the paho network thread only ever reaches it
    through ``call_soon_threadsafe``. Requests sent before the broker
    connection is ready are queued and flushed on connect.
    """

    def __init__(
        self,
        *,
        config: SyncConfig,
        user_id: str,
        token_provider: TokenProvider,
        loop: asyncio.AbstractEventLoop | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._user_id = user_id
        self._token_provider = token_provider
        self._loop = loop
        self._logger = logger or logging.getLogger(__name__)
        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._runtime: MqttRuntime | None = None
        self._bootstrap: MqttBootstrap | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._state_listeners: list[StateListener] = []
        self._outbox: deque[bytes] = deque(maxlen=_OUTBOX_LIMIT)

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._logger.debug("Push channel %s -> %s", self._state, state)
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                self._logger.warning("Push channel state listener failed", exc_info=True)

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def _remove() -> None:
            self._state_listeners = [cand for cand in self._state_listeners if cand is not listener]

        return _remove

    def connect(self) -> None:
        if self._closed:
            raise PushChannelError("push channel is closed")
        if self._state != ConnectionState.DISCONNECTED:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._set_state(ConnectionState.CONNECTING)
        self._start_task = loop.create_task(self._start(loop))

    async def _start(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            token = await self._token_provider()
            if not token:
                raise PushChannelError("no identity token available for push authentication")
            bootstrap = build_bootstrap(self._config, self._user_id, token)
            runtime = MqttRuntime(
                loop=loop,
                on_envelope=self._dispatch,
                on_connected=self._on_connected,
                on_disconnected=self._on_disconnected,
                logger=self._logger,
            )
            await loop.run_in_executor(None, runtime.start, bootstrap)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.debug("Push channel start failed", exc_info=True)
            if not self._closed:
                self._set_state(ConnectionState.DISCONNECTED)
            return

        if self._closed:
            await loop.run_in_executor(None, runtime.stop)
            return
        self._runtime = runtime
        self._bootstrap = bootstrap
        # The CONNACK callback may have run before the executor returned.
        if self._state == ConnectionState.READY:
            self._flush_outbox()

    def _on_connected(self) -> None:
        if self._closed:
            return
        self._set_state(ConnectionState.READY)
        self._flush_outbox()

    def _on_disconnected(self) -> None:
        if self._closed:
            return
        # paho reconnects on its own; stay in CONNECTING until it does.
        self._set_state(ConnectionState.CONNECTING)

    def _flush_outbox(self) -> None:
        runtime = self._runtime
        bootstrap = self._bootstrap
        if runtime is None or bootstrap is None:
            return
        while self._outbox:
            body = self._outbox[0]
            if not runtime.publish(bootstrap.requests_topic, body):
                return
            self._outbox.popleft()

    def subscribe(self, message_type: str, handler: MessageHandler) -> Callable[[], None]:
        if self._closed:
            raise PushChannelError("push channel is closed")
        self._handlers.setdefault(message_type, []).append(handler)
        self._logger.debug("Subscribed to push message type %s", message_type)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(message_type)
            if handlers is None:
                return
            self._handlers[message_type] = [cand for cand in handlers if cand is not handler]
            if not self._handlers[message_type]:
                self._handlers.pop(message_type, None)

        return _unsubscribe

    def send(self, message_type: str, request: dict[str, Any]) -> bool:
        if self._closed:
            raise PushChannelError("push channel is closed")
        body = encode_push_request(message_type, request)
        runtime = self._runtime
        bootstrap = self._bootstrap
        if self._state == ConnectionState.READY and runtime is not None and bootstrap is not None:
            if runtime.publish(bootstrap.requests_topic, body):
                return True
        self._logger.debug("Push channel not ready, queueing %s", message_type)
        self._outbox.append(body)
        if self._state == ConnectionState.DISCONNECTED:
            self.connect()
        return False

    def _dispatch(self, envelope: PushEnvelope) -> None:
        if self._closed:
            return
        handlers = self._handlers.get(envelope.type)
        if not handlers:
            self._logger.debug("No handler registered for push message type %s", envelope.type)
            return
        for handler in list(handlers):
            try:
                handler(envelope)
            except Exception:
                self._logger.warning("Push handler for %s failed", envelope.type, exc_info=True)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()
        self._outbox.clear()
        task = self._start_task
        self._start_task = None
        if task is not None and not task.done():
            task.cancel()
        runtime = self._runtime
        self._runtime = None
        if runtime is not None:
            try:
                runtime.stop()
            except Exception:
                self._logger.debug("MQTT runtime stop failed", exc_info=True)
        self._set_state(ConnectionState.DISCONNECTED)
        self._state_listeners.clear()


class DisabledPushChannel:
    """Stand-in used when push is turned off: every topic relies on its pull fallback."""

    state = ConnectionState.DISCONNECTED

    def connect(self) -> None:
        raise PushChannelError("push channel disabled by configuration")

    def close(self) -> None:
        return None

    def subscribe(self, message_type: str, handler: MessageHandler) -> Callable[[], None]:
        raise PushChannelError("push channel disabled by configuration")

    def send(self, message_type: str, request: dict[str, Any]) -> bool:
        return False

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        return lambda: None
