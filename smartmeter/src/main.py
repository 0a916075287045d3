"""
Simulation host loop for the smart meter telemetry engine.

Thin adapter around :class:`~smartmeter.src.scheduler.TelemetryScheduler`:
it opens the engine, calls ``step`` once per measurement period with a
synthesized waveform window (or scalar readings), and closes the engine on
shutdown. Graceful shutdown on SIGTERM/SIGINT sets a shared asyncio.Event so
the current tick finishes before the connection is released.

Structured JSON logging is used for all events. A HealthWriter records the
outcome of every tick.

CHANGELOG:
- 2026-10-16: Optional host-level reconnect of a failed session (STORY-014)
- 2026-10-16: Initial creation (STORY-014)

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
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from smartmeter.src.models import ConnectionStatus, TickResult

if TYPE_CHECKING:
    from smartmeter.src.health import HealthWriter
    from smartmeter.src.scheduler import TelemetryScheduler
    from smartmeter.src.simulator import WaveformSource

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging() -> None:
    """Configure structured JSON logging for the meter host.

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


def _masked_secret(value: str | None) -> str:
    """Return a short non-reversible fingerprint of a secret for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup, masking the HMAC key.

    Args:
        settings: A MeterSettings instance (or any object with the same attrs).
    """
    key = settings.hmac_key  # type: ignore[union-attr]
    logger.info(
        "Meter host starting with config: "
        "meter_id=%s, node_type=%s, target=%s:%s, transport=%s, "
        "send_interval_s=%s, payload_format=%s, use_waveform_input=%s, "
        "sampling_rate_hz=%s, fundamental_freq_hz=%s, tick_interval_s=%s, "
        "window_samples=%s, reconnect_on_failure=%s, hmac_key_masked=%s",
        settings.meter_id,  # type: ignore[union-attr]
        settings.node_type.value,  # type: ignore[union-attr]
        settings.target_host,  # type: ignore[union-attr]
        settings.target_port,  # type: ignore[union-attr]
        settings.transport.value,  # type: ignore[union-attr]
        settings.send_interval_s,  # type: ignore[union-attr]
        settings.payload_format.value,  # type: ignore[union-attr]
        settings.use_waveform_input,  # type: ignore[union-attr]
        settings.sampling_rate_hz,  # type: ignore[union-attr]
        settings.fundamental_freq_hz,  # type: ignore[union-attr]
        settings.tick_interval_s,  # type: ignore[union-attr]
        settings.window_samples,  # type: ignore[union-attr]
        settings.reconnect_on_failure,  # type: ignore[union-attr]
        _masked_secret(key.get_secret_value() if key is not None else None),
    )


# ---------------------------------------------------------------------------
# Single-tick function (easily testable)
# ---------------------------------------------------------------------------


async def _tick_once(
    *,
    scheduler: TelemetryScheduler,
    source: WaveformSource,
    use_waveform_input: bool,
    elapsed_s: float,
    health: HealthWriter | None,
    reconnect_on_failure: bool = False,
) -> TickResult:
    """Produce one input, run one engine tick and update the health file.

    Args:
        scheduler: The telemetry engine.
        source: Synthetic measurement source.
        use_waveform_input: Feed a waveform window (True) or scalars (False).
        elapsed_s: Seconds since the previous tick, for scalar-mode energy.
        health: HealthWriter instance, or None to skip health writes.
        reconnect_on_failure: Reopen a failed session before ticking.

    Returns:
        The engine's ``(status, timestamp_ns)`` for this tick.
    """
    if reconnect_on_failure and scheduler.connection_status is ConnectionStatus.FAILED:
        logger.info("Connection failed earlier, attempting reconnect")
        await scheduler.open()

    inputs = source.next_window() if use_waveform_input else source.next_readings(elapsed_s)
    result = await scheduler.step(inputs)

    if health is not None:
        try:
            health.record_tick(scheduler.last_outcome, scheduler.state, scheduler.connection_status)
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)

    return result


# ---------------------------------------------------------------------------
# Loop runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_loop(
    *,
    scheduler: TelemetryScheduler,
    source: WaveformSource,
    use_waveform_input: bool,
    tick_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
    reconnect_on_failure: bool = False,
) -> None:
    """Open the engine, tick until shutdown_event is set, then close it.

    The engine's ``close()`` runs even if the loop is cancelled.

    Args:
        scheduler: The telemetry engine.
        source: Synthetic measurement source.
        use_waveform_input: Feed waveform windows (True) or scalars (False).
        tick_interval_s: Seconds between ticks.
        shutdown_event: Event to signal graceful shutdown.
        health: HealthWriter instance, or None to skip health writes.
        reconnect_on_failure: Let the host reopen a failed session.
    """
    await scheduler.open()
    logger.info("Tick loop started (interval=%ss)", tick_interval_s)
    last_tick = time.monotonic()
    try:
        while not shutdown_event.is_set():
            now = time.monotonic()
            await _tick_once(
                scheduler=scheduler,
                source=source,
                use_waveform_input=use_waveform_input,
                elapsed_s=now - last_tick,
                health=health,
                reconnect_on_failure=reconnect_on_failure,
            )
            last_tick = now
            # Use wait with timeout so we can check shutdown between sleeps
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    shutdown_event.wait(),
                    timeout=tick_interval_s,
                )
    finally:
        await scheduler.close()
        logger.info("Tick loop stopped")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load settings, build components, run the loop.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from smartmeter.src.config import MeterSettings
    from smartmeter.src.health import HealthWriter
    from smartmeter.src.scheduler import TelemetryScheduler
    from smartmeter.src.simulator import WaveformSource

    settings = MeterSettings()
    log_config_summary(settings)
    config = settings.engine_config()

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    await run_loop(
        scheduler=TelemetryScheduler(config),
        source=WaveformSource.from_settings(settings),
        use_waveform_input=config.use_waveform_input,
        tick_interval_s=settings.tick_interval_s,
        shutdown_event=shutdown_event,
        health=HealthWriter(settings.health_path),
        reconnect_on_failure=settings.reconnect_on_failure,
    )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the meter host."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
