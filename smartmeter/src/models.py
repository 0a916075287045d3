"""
Pydantic models for the meter telemetry engine.

Defines the meter identity, the per-tick inputs (a waveform window or nine
externally supplied scalar quantities), the analyzer's measurement result,
the signing envelope and the scheduler's state and tick result types.

CHANGELOG:
- 2026-10-14: Add SchedulerState diagnostic counters (STORY-009)
- 2026-10-12: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

import math
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, Field


class NodeType(str, Enum):
    """Role of the metered node on the grid."""

    CONSUMER = "consumer"
    PROSUMER = "prosumer"
    GRID = "grid"


class TransportKind(str, Enum):
    """Transport used to reach the ingestion endpoint."""

    TCP = "tcp"
    UDP = "udp"


class PayloadFormat(str, Enum):
    """Wire schema of the encoded payload."""

    LINE = "line"
    JSON = "json"


class ConnectionStatus(str, Enum):
    """Lifecycle state of the transport session."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    FAILED = "failed"


class MeterIdentity(BaseModel):
    """Identity of the simulated meter, fixed for the life of an engine.

    Attributes:
        meter_id: Unique meter identifier.
        node_type: Role of the node (consumer, prosumer or grid).
    """

    meter_id: str
    node_type: NodeType = NodeType.CONSUMER

    model_config = {"frozen": True}


class WaveformWindow(BaseModel):
    """One window of simultaneously sampled voltage and current.

    Validity (non-empty, equal length, at least two finite samples) is
    checked by :func:`~smartmeter.src.analyzer.analyze`, which raises
    ``InvalidWindow`` rather than a validation error.

    Attributes:
        voltage: Voltage samples in volts.
        current: Current samples in amperes.
        sample_rate_hz: Sampling rate of both sequences.
    """

    voltage: list[float]
    current: list[float]
    sample_rate_hz: float


class ScalarReadings(BaseModel):
    """Quantities supplied by an upstream system instead of a waveform.

    ``None`` (or NaN) in the aggregate fields means "not available" and is
    encoded as the missing sentinel, never as zero.

    Attributes:
        p_active: Active power in watts.
        p_reactive: Reactive power in var.
        voltage: RMS voltage in volts.
        current: RMS current in amperes.
        frequency: Grid frequency in hertz.
        time_of_use: Tariff tier label (empty when unknown).
        energy_kwh: Cumulative active energy in kWh.
        max_demand_kw: Maximum demand in kW.
        cost: Accumulated cost in the billing currency.
    """

    p_active: float
    p_reactive: float
    voltage: float
    current: float
    frequency: float
    time_of_use: str = ""
    energy_kwh: float | None = None
    max_demand_kw: float | None = None
    cost: float | None = None


class MeasurementResult(BaseModel):
    """Measurands derived from a single waveform window.

    Attributes:
        v_rms: Total RMS voltage (V).
        i_rms: Total RMS current (A).
        p_active_total: Mean instantaneous power, including harmonics (W).
        p_active_fund: Fundamental active power (W).
        q_fund: Fundamental reactive power (var).
        s_fund: Fundamental apparent power (VA).
        v_rms_fund: Fundamental RMS voltage (V).
        i_rms_fund: Fundamental RMS current (A).
        frequency: Reported frequency, the configured nominal value (Hz).
        sample_count: Number of samples in the window.
    """

    v_rms: float
    i_rms: float
    p_active_total: float
    p_active_fund: float
    q_fund: float
    s_fund: float
    v_rms_fund: float
    i_rms_fund: float
    frequency: float
    sample_count: int

    model_config = {"frozen": True}

    def to_readings(self) -> ScalarReadings:
        """Project onto the reported quantities; aggregates are absent."""
        return ScalarReadings(
            p_active=self.p_active_total,
            p_reactive=self.q_fund,
            voltage=self.v_rms,
            current=self.i_rms,
            frequency=self.frequency,
        )


class Envelope(BaseModel):
    """Signed wrapper transmitted in place of the raw payload.

    Serialized with ``by_alias=True`` so the signature goes out as ``hmac``.
    """

    payload: str
    hmac_hex: str = Field(serialization_alias="hmac")
    meter_id: str
    timestamp_ns: int


class SchedulerState(BaseModel):
    """Mutable state owned by the telemetry scheduler.

    Attributes:
        last_send_time_ns: Time of the last successful transmission
            (nanoseconds since epoch, 0 = never).
        sample_count: Ticks since construction or the last reset.
        sent_count: Ticks that transmitted successfully.
        skipped_count: Ticks that did not transmit (not due / not connected).
        error_count: Ticks that ended in an error.
    """

    last_send_time_ns: int = 0
    sample_count: int = 0
    sent_count: int = 0
    skipped_count: int = 0
    error_count: int = 0


class TickOutcome(str, Enum):
    """Classification of a single scheduler tick."""

    SENT = "sent"
    NOT_DUE = "not_due"
    NOT_CONNECTED = "not_connected"
    ERROR = "error"

    @property
    def code(self) -> int:
        """Status code reported to the host (1 sent, 0 skipped, -1 error)."""
        if self is TickOutcome.SENT:
            return 1
        if self is TickOutcome.ERROR:
            return -1
        return 0


class TickResult(NamedTuple):
    """Host boundary result of ``step``: status code and capture time."""

    status: int
    timestamp_ns: int


def is_missing(value: float | None) -> bool:
    """Return True for quantities that are absent (None or NaN)."""
    return value is None or math.isnan(value)
