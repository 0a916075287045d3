"""
Telemetry scheduler: one host tick -> analyze, gate, encode, sign, send.

Each call to :meth:`TelemetryScheduler.step` is one atomic unit of work:

1. Capture the tick time, bump the sample counter and compute the time since
   the last successful send.
2. Waveform mode: analyze the window. Scalar mode: take the nine supplied
   quantities as they are.
3. Gate: a send is attempted on the first tick after construction/reset, or
   once ``send_interval_s`` has elapsed since the last successful send.
4. Send attempt: encode, wrap in a signed envelope when a key is configured,
   and transmit. ``last_send_time_ns`` moves only on success.

The outcome is returned as ``(status, timestamp_ns)`` with status 1 (sent),
0 (not due or not connected) or -1 (error). Nothing raised during a tick
propagates to the host; errors are logged and counted.

The scheduler never reconnects on its own; ``open()`` is the host's call.

CHANGELOG:
- 2026-10-15: Accept a 9-tuple of scalar quantities in scalar mode (STORY-010)
- 2026-10-14: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Union

from pydantic import ValidationError

from smartmeter.src.analyzer import analyze
from smartmeter.src.config import EngineConfig
from smartmeter.src.connection import ConnectionManager
from smartmeter.src.encoder import encode
from smartmeter.src.errors import ConnectError, EncodeError, InvalidWindow, MeterError, NotConnected
from smartmeter.src.models import (
    ConnectionStatus,
    MeasurementResult,
    ScalarReadings,
    SchedulerState,
    TickOutcome,
    TickResult,
    WaveformWindow,
)
from smartmeter.src.signer import seal

logger = logging.getLogger(__name__)

_NS_PER_S = 1_000_000_000

_SCALAR_ORDER = (
    "p_active",
    "p_reactive",
    "voltage",
    "current",
    "frequency",
    "time_of_use",
    "energy_kwh",
    "max_demand_kw",
    "cost",
)
"""Positional order of the nine scalar-mode quantities."""

TickInputs = Union[WaveformWindow, ScalarReadings, Sequence[object]]


class TelemetryScheduler:
    """Rate-gated measurement-to-telemetry pipeline for one meter.

    Args:
        config: Immutable engine configuration.
        connection: Transport session; built from *config* when omitted.
        clock: Wall-clock source in nanoseconds since the epoch.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        connection: ConnectionManager | None = None,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._config = config
        self._identity = config.identity
        self._connection = connection if connection is not None else ConnectionManager.from_config(config)
        self._clock = clock
        self._state = SchedulerState()
        self._last_outcome: TickOutcome | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def state(self) -> SchedulerState:
        """Snapshot of the scheduler state."""
        return self._state.model_copy()

    @property
    def last_outcome(self) -> TickOutcome | None:
        """Outcome of the most recent tick, or None before the first tick."""
        return self._last_outcome

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._connection.status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> bool:
        """Open the transport session.

        Returns:
            True when connected, False when the connection failed (the
            failure is logged; ticks report ``not_connected`` until a later
            ``open()`` succeeds).
        """
        try:
            await self._connection.open()
        except ConnectError as exc:
            logger.warning("Meter %s: connection setup failed: %s", self._config.meter_id, exc.message)
            return False
        return True

    async def close(self) -> None:
        """Release the transport session. Safe to call repeatedly."""
        await self._connection.close()

    def reset(self) -> None:
        """Clear the send timer and counters; the connection is untouched."""
        self._state = SchedulerState()
        self._last_outcome = None
        logger.info("Meter %s: scheduler state reset", self._config.meter_id)

    def window(self, voltage: Sequence[float], current: Sequence[float]) -> WaveformWindow:
        """Wrap raw samples in a window at the configured sampling rate."""
        return WaveformWindow(
            voltage=list(voltage),
            current=list(current),
            sample_rate_hz=self._config.sampling_rate_hz,
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def step(self, inputs: TickInputs) -> TickResult:
        """Run one tick.

        Args:
            inputs: A :class:`WaveformWindow` in waveform mode; in scalar
                mode a :class:`ScalarReadings` or the nine quantities in
                order (p_active, p_reactive, voltage, current, frequency,
                time_of_use, energy_kwh, max_demand_kw, cost).

        Returns:
            ``(status, timestamp_ns)``; timestamp is this tick's capture
            time whatever the outcome.
        """
        now_ns = self._clock()
        self._state.sample_count += 1
        elapsed_s = (now_ns - self._state.last_send_time_ns) / _NS_PER_S

        try:
            outcome = await self._run(inputs, now_ns, elapsed_s)
        except NotConnected as exc:
            logger.warning("Meter %s: %s, skipping send", self._config.meter_id, exc.message)
            outcome = TickOutcome.NOT_CONNECTED
        except MeterError as exc:
            logger.error(
                "Meter %s: tick failed (%s): %s",
                self._config.meter_id,
                type(exc).__name__,
                exc.message,
            )
            outcome = TickOutcome.ERROR
        except Exception:
            logger.error("Meter %s: unexpected tick error", self._config.meter_id, exc_info=True)
            outcome = TickOutcome.ERROR

        self._record(outcome)
        return TickResult(outcome.code, now_ns)

    async def _run(self, inputs: TickInputs, now_ns: int, elapsed_s: float) -> TickOutcome:
        source = self._measure(inputs)

        if not (self._state.sample_count == 1 or elapsed_s >= self._config.send_interval_s):
            logger.debug(
                "Meter %s: send not due (elapsed=%.3fs < %.3fs)",
                self._config.meter_id,
                elapsed_s,
                self._config.send_interval_s,
            )
            return TickOutcome.NOT_DUE

        if self._connection.status is not ConnectionStatus.CONNECTED:
            logger.warning(
                "Meter %s: not connected (%s), skipping send",
                self._config.meter_id,
                self._connection.status.value,
            )
            return TickOutcome.NOT_CONNECTED

        payload = encode(
            source,
            self._identity,
            self._config.payload_format,
            now_ns,
            include_tags=self._config.line_protocol_tags,
        )
        key = self._config.signing_key
        data = seal(payload, key, self._config.meter_id, now_ns) if key else payload

        await self._connection.send(data)
        self._state.last_send_time_ns = now_ns
        logger.info(
            "Meter %s: sent %d bytes (%s%s)",
            self._config.meter_id,
            len(data),
            self._config.payload_format.value,
            ", signed" if key else "",
        )
        return TickOutcome.SENT

    def _measure(self, inputs: TickInputs) -> MeasurementResult | ScalarReadings:
        """Analyze a window (waveform mode) or accept scalars (scalar mode)."""
        if self._config.use_waveform_input:
            if not isinstance(inputs, WaveformWindow):
                raise InvalidWindow(f"Expected a waveform window, got {type(inputs).__name__}")
            return analyze(
                inputs,
                self._config.fundamental_freq_hz,
                window_time_domain=self._config.window_time_domain,
            )

        if isinstance(inputs, ScalarReadings):
            return inputs
        if isinstance(inputs, (list, tuple)) and len(inputs) == len(_SCALAR_ORDER):
            try:
                return ScalarReadings(**dict(zip(_SCALAR_ORDER, inputs)))
            except ValidationError as exc:
                raise EncodeError(f"Invalid scalar quantities: {exc.error_count()} error(s)") from exc
        raise EncodeError(f"Expected {len(_SCALAR_ORDER)} scalar quantities, got {type(inputs).__name__}")

    def _record(self, outcome: TickOutcome) -> None:
        self._last_outcome = outcome
        if outcome is TickOutcome.SENT:
            self._state.sent_count += 1
        elif outcome is TickOutcome.ERROR:
            self._state.error_count += 1
        else:
            self._state.skipped_count += 1
