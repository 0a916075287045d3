"""
Payload encoder: measurement result or scalar readings -> wire bytes.

Two schemas:

- **Line protocol** (``PayloadFormat.LINE``): three newline-terminated records
  ``realtime_readings``, ``aggregated_usage`` and ``meter_cost``, every float
  written with six decimals and the shared nanosecond timestamp last.
  Missing aggregates are written as the literal ``NaN``.
- **Structured JSON** (``PayloadFormat.JSON``): one compact document with
  OBIS-like measurement keys, an ``aggregates`` object and, for analyzer
  results, a ``meta`` object with the fundamental-domain values. Missing
  values are ``null``. The keys only borrow the OBIS naming convention; this
  is not a DLMS/COSEM implementation.

Encoding is deterministic: identical arguments give identical bytes.

CHANGELOG:
- 2026-10-15: Optional meter_id/node_type tags on line records (STORY-011)
- 2026-10-13: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import math

from pydantic import BaseModel, Field

from smartmeter.src.errors import EncodeError
from smartmeter.src.models import (
    MeasurementResult,
    MeterIdentity,
    PayloadFormat,
    ScalarReadings,
    is_missing,
)

MISSING_LINE_VALUE = "NaN"
"""Line-protocol sentinel for a quantity that is not available."""

# OBIS-like logical identifiers for the structured payload.
OBIS_ACTIVE_ENERGY = "1-0:1.8.0"
OBIS_REACTIVE_ENERGY = "1-0:2.8.0"
OBIS_ACTIVE_POWER = "1-0:16.7.0"
OBIS_REACTIVE_POWER = "1-0:3.7.0"
OBIS_VOLTAGE = "1-0:32.7.0"
OBIS_CURRENT = "1-0:31.7.0"
OBIS_FREQUENCY = "1-0:14.7.0"

_REQUIRED_FIELDS = ("p_active", "p_reactive", "voltage", "current", "frequency")


# ---------------------------------------------------------------------------
# Structured payload models
# ---------------------------------------------------------------------------


class Aggregates(BaseModel):
    """Externally supplied aggregate quantities."""

    max_demand_kw: float | None
    cost: float | None
    time_of_use: str


class FundamentalMeta(BaseModel):
    """Fundamental-domain intermediates reported alongside analyzer results."""

    vrms_fund: float = Field(serialization_alias="Vrms_fund")
    irms_fund: float = Field(serialization_alias="Irms_fund")
    p_fund: float = Field(serialization_alias="P_fund")
    q_fund: float = Field(serialization_alias="Q_fund")
    s: float = Field(serialization_alias="S")
    n: int = Field(serialization_alias="N")


class StructuredPayload(BaseModel):
    """Structured JSON document for one tick."""

    meter_id: str
    node_type: str
    timestamp_ns: int
    measurements: dict[str, float | None]
    aggregates: Aggregates
    meta: FundamentalMeta | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _optional(value: float | None) -> float | None:
    """Normalize NaN to None so both spell 'missing'."""
    return None if is_missing(value) else value


def _fmt(value: float | None) -> str:
    """Six-decimal float, or the missing sentinel."""
    if is_missing(value):
        return MISSING_LINE_VALUE
    return f"{value:.6f}"


def _escape_tag(value: str) -> str:
    """Escape commas, equals signs and spaces in a line-protocol tag value."""
    return value.replace(",", r"\,").replace("=", r"\=").replace(" ", r"\ ")


def _split(source: MeasurementResult | ScalarReadings) -> tuple[ScalarReadings, FundamentalMeta | None]:
    """Reported quantities plus fundamental meta (analyzer results only)."""
    if isinstance(source, MeasurementResult):
        meta = FundamentalMeta(
            vrms_fund=source.v_rms_fund,
            irms_fund=source.i_rms_fund,
            p_fund=source.p_active_fund,
            q_fund=source.q_fund,
            s=source.s_fund,
            n=source.sample_count,
        )
        return source.to_readings(), meta
    if isinstance(source, ScalarReadings):
        return source, None
    raise EncodeError(f"Cannot encode {type(source).__name__}")


def _check(readings: ScalarReadings, timestamp_ns: int) -> None:
    """Reject non-finite required quantities and negative timestamps."""
    for name in _REQUIRED_FIELDS:
        value = getattr(readings, name)
        if not math.isfinite(value):
            raise EncodeError(f"Quantity '{name}' must be finite, got {value!r}")
    if timestamp_ns < 0:
        raise EncodeError(f"Timestamp must be non-negative, got {timestamp_ns}")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


def encode_line_protocol(
    readings: ScalarReadings,
    identity: MeterIdentity,
    timestamp_ns: int,
    *,
    include_tags: bool = False,
) -> bytes:
    """Encode the three line-protocol records for one tick."""
    tags = ""
    tou_tag = ""
    if include_tags:
        tags = f",meter_id={_escape_tag(identity.meter_id)},node_type={_escape_tag(identity.node_type.value)}"
        if readings.time_of_use:
            tou_tag = f",time_of_use_tier={_escape_tag(readings.time_of_use)}"

    realtime = (
        f"realtime_readings{tags} "
        f"p_active={_fmt(readings.p_active)},p_reactive={_fmt(readings.p_reactive)},"
        f"voltage={_fmt(readings.voltage)},current={_fmt(readings.current)},"
        f"frequency={_fmt(readings.frequency)} {timestamp_ns}"
    )
    aggregated = (
        f"aggregated_usage{tags}{tou_tag} "
        f"energy_kwh={_fmt(readings.energy_kwh)},max_demand_kw={_fmt(readings.max_demand_kw)} "
        f"{timestamp_ns}"
    )
    cost = f"meter_cost{tags} total_cost={_fmt(readings.cost)} {timestamp_ns}"

    return f"{realtime}\n{aggregated}\n{cost}\n".encode("utf-8")


def encode_structured(
    readings: ScalarReadings,
    identity: MeterIdentity,
    timestamp_ns: int,
    meta: FundamentalMeta | None = None,
) -> bytes:
    """Encode the structured JSON document for one tick."""
    payload = StructuredPayload(
        meter_id=identity.meter_id,
        node_type=identity.node_type.value,
        timestamp_ns=timestamp_ns,
        measurements={
            OBIS_ACTIVE_ENERGY: _optional(readings.energy_kwh),
            OBIS_REACTIVE_ENERGY: None,
            OBIS_ACTIVE_POWER: readings.p_active,
            OBIS_REACTIVE_POWER: readings.p_reactive,
            OBIS_VOLTAGE: readings.voltage,
            OBIS_CURRENT: readings.current,
            OBIS_FREQUENCY: readings.frequency,
        },
        aggregates=Aggregates(
            max_demand_kw=_optional(readings.max_demand_kw),
            cost=_optional(readings.cost),
            time_of_use=readings.time_of_use,
        ),
        meta=meta,
    )
    exclude = {"meta"} if meta is None else None
    return payload.model_dump_json(by_alias=True, exclude=exclude).encode("utf-8")


def encode(
    source: MeasurementResult | ScalarReadings,
    identity: MeterIdentity,
    schema: PayloadFormat,
    timestamp_ns: int,
    *,
    include_tags: bool = False,
) -> bytes:
    """Encode one tick's quantities in the configured schema.

    Args:
        source: Analyzer result (waveform mode) or externally supplied
            readings (scalar mode).
        identity: Meter identity embedded in the payload.
        schema: Line protocol or structured JSON.
        timestamp_ns: Capture time in nanoseconds since the epoch.
        include_tags: Line protocol only; add meter_id/node_type tags.

    Returns:
        The payload bytes to sign and/or transmit.

    Raises:
        EncodeError: If a required quantity is non-finite, the timestamp is
            negative, or *source* is of an unsupported type.
    """
    readings, meta = _split(source)
    _check(readings, timestamp_ns)

    if PayloadFormat(schema) is PayloadFormat.LINE:
        return encode_line_protocol(readings, identity, timestamp_ns, include_tags=include_tags)
    return encode_structured(readings, identity, timestamp_ns, meta)
