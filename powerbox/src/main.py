"""
Powerbox daemon main loop: MQTT transport around the PhaseEngine.

Connects to the host platform's MQTT broker and:

1. Publishes the WebUI settings schema (retained) and a registration
   request, then subscribes to ``connect/+/data``, the target's data topic
   and ``config/{app}/set``.
2. Feeds every ``{target}/data`` message through the validator into the
   PhaseEngine. When a frame closes a window, publishes the CT configuration
   map to ``{target}/config/in`` and the writeback/UI payloads to
   ``energy/{app}/...``.
3. Applies ``config/{app}/set`` updates to the runtime settings,
   subscribing to a new target immediately.

Messages are handled on one event loop and the engine never awaits, so a
window close always completes before another frame is ingested. An
exception while handling one message is logged and does not stop the loop.
Broker disconnects are retried with exponential backoff. Graceful shutdown
on SIGTERM/SIGINT sets a shared asyncio.Event.

When a remote broker URL is configured, a second session bridges it: the
target's ``{target}/data`` messages there feed the same engine, and the
configuration map is written through the remote broker while it is
connected (falling back to the local broker otherwise). The remote session
is rebuilt whenever its settings or the target change.

Structured JSON logging is used for all events. Every record at INFO and above
is also forwarded to ``logs/{app}`` on the local broker. A HealthWriter instance
tracks sample and window activity, writing a JSON health file after each
window close.

CHANGELOG:
- 2026-10-20: Remote broker bridge and MQTT log forwarding (STORY-116)
- 2026-10-19: Replace Modbus poll/upload loops with MQTT telemetry loop (STORY-113)
- 2026-02-14: Replace inline health writer with HealthWriter (STORY-015)
- 2026-02-14: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
import time
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import aiomqtt
from pydantic import ValidationError

from powerbox.src.config import SETTINGS_SCHEMA, PowerboxSettings, RuntimeSettings
from powerbox.src.engine import PhaseEngine, WindowResult
from powerbox.src.health import HealthWriter
from powerbox.src.validator import parse_frame

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEVICE_DATA_WILDCARD = "connect/+/data"
"""Telemetry topic of every Connect on the broker."""

REGISTER_TOPIC = "GeniusApps/register"
"""Host platform registration topic."""

REGISTRATION_ACCEPT_S: float = 0.5
"""Registration is auto-accepted by the platform after this delay."""

MAX_BACKOFF_S: float = 60.0
"""Maximum reconnect delay in seconds (cap for exponential growth)."""

LOG_QUEUE_SIZE = 1000
"""Log records buffered for ``logs/{app}`` while the local broker is away."""


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging() -> None:
    """Configure structured JSON logging for the powerbox daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO)


class MqttLogHandler(logging.Handler):
    """Buffers log records for publication to ``logs/{app}``.

    ``emit`` runs synchronously inside logging calls, so records are only
    queued here; :func:`forward_logs` publishes them while the local broker
    is connected. New records are dropped while the buffer is full.

    Args:
        app_name: Application name, used as the ``service`` field and in
            the topic.
        maxsize: Maximum number of buffered records.
    """

    def __init__(self, app_name: str, maxsize: int = LOG_QUEUE_SIZE) -> None:
        super().__init__(level=logging.INFO)
        self.app_name = app_name
        self.topic = f"logs/{app_name}"
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self._exc_formatter = logging.Formatter()

    def to_payload(self, record: logging.LogRecord) -> dict[str, Any]:
        """Build the platform log payload for *record*."""
        meta: dict[str, Any] = {"logger": record.name}
        if record.exc_info and record.exc_info[1] is not None:
            meta["exception"] = self._exc_formatter.formatException(record.exc_info)
        return {
            "level": record.levelname,
            "service": self.app_name,
            "message": record.getMessage(),
            "meta": meta,
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
        }

    def emit(self, record: logging.LogRecord) -> None:
        try:
            payload = self.to_payload(record)
        except Exception:
            self.handleError(record)
            return
        with contextlib.suppress(asyncio.QueueFull):
            self.queue.put_nowait(payload)


async def forward_logs(client: Any, handler: MqttLogHandler) -> None:
    """Publish buffered log records until cancelled."""
    while True:
        payload = await handler.queue.get()
        await client.publish(handler.topic, payload=json.dumps(payload))


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


def log_config_summary(settings: PowerboxSettings) -> None:
    """Log a config summary at startup, masking both broker passwords."""
    logger.info(
        "Powerbox daemon starting with config: "
        "mqtt_host=%s, mqtt_port=%s, mqtt_username=%s, app_name=%s, "
        "target_device_id=%s, calculation_interval=%s, "
        "remote_broker_url=%s, remote_broker_username=%s, "
        "health_path=%s, reconnect_interval_s=%s, mqtt_password_masked=%s, "
        "remote_broker_password_masked=%s",
        settings.mqtt_host,
        settings.mqtt_port,
        settings.mqtt_username,
        settings.app_name,
        settings.target_device_id or "<unset>",
        settings.calculation_interval,
        settings.remote_broker_url or "<disabled>",
        settings.remote_broker_username,
        settings.health_path,
        settings.reconnect_interval_s,
        _masked_token(settings.mqtt_password),
        _masked_token(settings.remote_broker_password),
    )


# ---------------------------------------------------------------------------
# Daemon context
# ---------------------------------------------------------------------------


@dataclass
class DaemonContext:
    """Mutable state shared by the message handlers.

    Attributes:
        settings: Startup configuration.
        runtime: WebUI-editable settings, replaced on every update.
        engine: The aggregation engine.
        health: Health writer, or ``None`` to skip health tracking.
        log_handler: Log forwarder drained by the local session, if any.
        local_client: Local broker client while connected.
        remote_client: Remote broker client while connected.
        remote_changed: Set when the remote session must be rebuilt.
    """

    settings: PowerboxSettings
    runtime: RuntimeSettings
    engine: PhaseEngine
    health: HealthWriter | None = None
    log_handler: MqttLogHandler | None = None
    local_client: Any | None = None
    remote_client: Any | None = None
    remote_changed: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def settings_topic(self) -> str:
        return f"config/{self.settings.app_name}/set"


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


async def publish_data(
    client: Any,
    *,
    app_name: str,
    measurement: str,
    fields: dict[str, Any],
) -> None:
    """Publish a measurement in the platform envelope to ``energy/{app}/{measurement}``."""
    payload = {
        "measurement": measurement,
        "fields": fields,
        "tags": {"app": app_name},
    }
    await client.publish(f"energy/{app_name}/{measurement}", payload=json.dumps(payload))


async def publish_window(client: Any, ctx: DaemonContext, result: WindowResult) -> None:
    """Publish the outputs of a closed window.

    Sends the CT configuration map to the target device (skipped when no
    target is set), through the remote broker when it is connected and
    the local broker otherwise, and the writeback/UI payloads to the
    platform.
    """
    app_name = ctx.settings.app_name
    config_topic = ctx.runtime.config_topic

    if config_topic is None:
        logger.warning("No target device set, skipping configuration writeback")
    else:
        config = result.config.model_dump()
        await publish_data(client, app_name=app_name, measurement="writeback", fields=config)
        target_id = ctx.runtime.target_device_id
        if ctx.remote_client is not None:
            await ctx.remote_client.publish(config_topic, payload=json.dumps(config))
            logger.info("Sent CT Configuration Map to remote device (%s).", target_id)
        else:
            await client.publish(config_topic, payload=json.dumps(config))
            logger.info("Sent CT Configuration Map to local broker device (%s).", target_id)

    await publish_data(
        client,
        app_name=app_name,
        measurement="ui_data",
        fields=result.snapshot.model_dump(),
    )


async def register(client: Any, settings: PowerboxSettings) -> None:
    """Send the registration request and wait for the platform's auto-accept."""
    payload = {
        "appName": settings.app_name,
        "developerId": settings.developer_id,
        "ownerId": settings.owner_id,
        "timestamp": int(time.time() * 1000),
    }
    await client.publish(REGISTER_TOPIC, payload=json.dumps(payload))
    logger.info("Registration request sent for %s", settings.app_name)
    await asyncio.sleep(REGISTRATION_ACCEPT_S)
    logger.info("App %s successfully registered.", settings.app_name)


async def _on_connect(client: Any, ctx: DaemonContext) -> None:
    """Announce the app and subscribe to its topics."""
    app_name = ctx.settings.app_name
    await client.publish(
        f"{app_name}/settings/schema",
        payload=json.dumps(SETTINGS_SCHEMA),
        retain=True,
    )
    logger.info("Settings schema published to WebUI")

    await client.subscribe(ctx.settings_topic)
    await register(client, ctx.settings)

    await client.subscribe(DEVICE_DATA_WILDCARD)
    data_topic = ctx.runtime.data_topic
    if data_topic is not None:
        await client.subscribe(data_topic)
        logger.info("Subscribed to target: %s", data_topic)
    logger.info("Connect Powerbox Parser started.")


# ---------------------------------------------------------------------------
# Message handling (single message, easily testable)
# ---------------------------------------------------------------------------


async def _apply_settings_update(client: Any, ctx: DaemonContext, payload: Any) -> None:
    """Merge a ``config/{app}/set`` update into the runtime settings."""
    try:
        update = json.loads(payload)
        if not isinstance(update, dict):
            raise ValueError("settings update is not a JSON object")
        runtime = ctx.runtime.merged(update)
    except (TypeError, ValueError, ValidationError) as exc:
        logger.error("Failed to parse settings update: %s", exc)
        return

    previous = ctx.runtime
    ctx.runtime = runtime
    ctx.engine.interval_s = runtime.calculation_interval
    logger.info(
        "Settings updated! Target Device ID: %s, interval=%ss",
        runtime.target_device_id or "<unset>",
        runtime.calculation_interval,
    )

    if runtime.data_topic is not None and runtime.data_topic != previous.data_topic:
        await client.subscribe(runtime.data_topic)
        logger.info("Subscribed to target: %s", runtime.data_topic)

    if previous.remote_differs(runtime):
        ctx.remote_changed.set()


async def handle_message(client: Any, ctx: DaemonContext, topic: str, payload: Any) -> None:
    """Route one MQTT message.

    Catches all exceptions so that the caller's loop is never broken.

    Args:
        client: Connected local broker client used for publishing.
        ctx: Shared daemon state.
        topic: Topic the message arrived on.
        payload: Raw message body.
    """
    try:
        if topic == ctx.settings_topic:
            await _apply_settings_update(client, ctx, payload)
            return

        if topic != ctx.runtime.data_topic:
            return

        frame = parse_frame(payload)
        if frame is None:
            return

        result = ctx.engine.ingest(frame)
        if ctx.health is not None:
            ctx.health.record_sample()
        if result is None:
            return

        await publish_window(client, ctx, result)
        if ctx.health is not None:
            ctx.health.record_window(result.topology.value)
    except Exception:
        logger.error("Error handling message on %s", topic, exc_info=True)


async def _listen(client: Any, ctx: DaemonContext) -> None:
    async for message in client.messages:
        await handle_message(client, ctx, str(message.topic), message.payload)


async def _listen_remote(client: Any, ctx: DaemonContext) -> None:
    """Feed the target's telemetry from the remote broker into the engine.

    Window outputs are published through the local broker, so frames are
    dropped while it is disconnected.
    """
    async for message in client.messages:
        topic = str(message.topic)
        if topic != ctx.runtime.data_topic:
            continue
        if ctx.local_client is None:
            logger.debug("Local broker not connected, dropping remote telemetry")
            continue
        await handle_message(ctx.local_client, ctx, topic, message.payload)


# ---------------------------------------------------------------------------
# Connection loops with reconnect and graceful shutdown
# ---------------------------------------------------------------------------


async def _wait_any(events: Iterable[asyncio.Event], timeout: float | None = None) -> None:
    """Return once any of *events* is set or *timeout* seconds have passed."""
    waiters = [asyncio.create_task(event.wait()) for event in events]
    try:
        await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in waiters:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


async def _serve(
    workers: Iterable[Coroutine[Any, Any, None]],
    stop_events: Iterable[asyncio.Event],
) -> None:
    """Run *workers* until one of them fails or any stop event is set."""
    worker_tasks = [asyncio.create_task(worker) for worker in workers]
    stop_tasks = [asyncio.create_task(event.wait()) for event in stop_events]
    done, pending = await asyncio.wait(
        {*worker_tasks, *stop_tasks},
        return_when=asyncio.FIRST_COMPLETED,
    )
    for task in pending:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    for task in worker_tasks:
        if task in done:
            # Propagates MqttError to trigger a reconnect.
            task.result()


async def _run_session(client: Any, ctx: DaemonContext, shutdown_event: asyncio.Event) -> None:
    """Serve one local broker connection until shutdown or a worker failure."""
    await _on_connect(client, ctx)

    workers = [_listen(client, ctx)]
    if ctx.log_handler is not None:
        workers.append(forward_logs(client, ctx.log_handler))
    await _serve(workers, [shutdown_event])


async def _run_remote_session(
    client: Any,
    ctx: DaemonContext,
    shutdown_event: asyncio.Event,
) -> None:
    """Serve one remote broker connection until shutdown, a settings change or a failure."""
    data_topic = ctx.runtime.data_topic
    if data_topic is not None:
        await client.subscribe(data_topic)
        logger.info("Subscribed to remote target: %s", data_topic)

    await _serve([_listen_remote(client, ctx)], [shutdown_event, ctx.remote_changed])


def _backoff_delay(settings: PowerboxSettings, failures: int) -> float:
    return min(settings.reconnect_interval_s * (2 ** (failures - 1)), MAX_BACKOFF_S)


async def run_loop(
    *,
    ctx: DaemonContext,
    shutdown_event: asyncio.Event,
    client_factory: Callable[..., Any] = aiomqtt.Client,
) -> None:
    """Run the local MQTT session, reconnecting with backoff until shutdown.

    Args:
        ctx: Shared daemon state.
        shutdown_event: Event to signal graceful shutdown.
        client_factory: Callable returning an async-context-manager MQTT
            client; defaults to :class:`aiomqtt.Client`.
    """
    settings = ctx.settings
    failures = 0

    while not shutdown_event.is_set():
        try:
            async with client_factory(
                settings.mqtt_host,
                port=settings.mqtt_port,
                username=settings.mqtt_username or None,
                password=settings.mqtt_password or None,
                identifier=settings.app_name,
            ) as client:
                logger.info(
                    "Connected to MQTT broker %s:%d",
                    settings.mqtt_host,
                    settings.mqtt_port,
                )
                failures = 0
                ctx.local_client = client
                try:
                    await _run_session(client, ctx, shutdown_event)
                finally:
                    ctx.local_client = None
        except aiomqtt.MqttError as exc:
            failures += 1
            delay = _backoff_delay(settings, failures)
            logger.warning(
                "MQTT broker error: %s; reconnecting in %.1fs (consecutive failures: %d)",
                exc,
                delay,
                failures,
            )
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=delay)

    logger.info("Shutdown complete")


async def run_remote_loop(
    *,
    ctx: DaemonContext,
    shutdown_event: asyncio.Event,
    client_factory: Callable[..., Any] = aiomqtt.Client,
) -> None:
    """Bridge the remote broker until shutdown.

    Idles while no remote URL is set. The session is rebuilt whenever
    ``ctx.remote_changed`` is set, and broker errors are retried with the
    same backoff as the local session.

    Args:
        ctx: Shared daemon state.
        shutdown_event: Event to signal graceful shutdown.
        client_factory: Callable returning an async-context-manager MQTT
            client; defaults to :class:`aiomqtt.Client`.
    """
    failures = 0

    while not shutdown_event.is_set():
        ctx.remote_changed.clear()
        runtime = ctx.runtime
        endpoint = runtime.remote_endpoint
        if endpoint is None:
            logger.info("Remote broker disabled")
            await _wait_any([shutdown_event, ctx.remote_changed])
            continue

        host, port = endpoint
        logger.info("Connecting to remote broker: %s", runtime.remote_broker_url)
        try:
            async with client_factory(
                host,
                port=port,
                username=runtime.remote_broker_username or None,
                password=runtime.remote_broker_password or None,
                identifier=f"{ctx.settings.app_name}-remote",
            ) as client:
                logger.info("Connected to remote broker %s", runtime.remote_broker_url)
                failures = 0
                ctx.remote_client = client
                try:
                    await _run_remote_session(client, ctx, shutdown_event)
                finally:
                    ctx.remote_client = None
        except aiomqtt.MqttError as exc:
            failures += 1
            delay = _backoff_delay(ctx.settings, failures)
            logger.error(
                "Remote broker error: %s; reconnecting in %.1fs (consecutive failures: %d)",
                exc,
                delay,
                failures,
            )
            await _wait_any([shutdown_event, ctx.remote_changed], timeout=delay)

    logger.info("Remote broker bridge stopped")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build the engine, run both broker loops.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    settings = PowerboxSettings()
    log_config_summary(settings)

    log_handler = MqttLogHandler(settings.app_name)
    logging.getLogger().addHandler(log_handler)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    runtime = RuntimeSettings.from_settings(settings)
    ctx = DaemonContext(
        settings=settings,
        runtime=runtime,
        engine=PhaseEngine(interval_s=runtime.calculation_interval),
        health=HealthWriter(settings.health_path),
        log_handler=log_handler,
    )

    await asyncio.gather(
        run_loop(ctx=ctx, shutdown_event=shutdown_event),
        run_remote_loop(ctx=ctx, shutdown_event=shutdown_event),
    )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the powerbox daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
