"""
Meter engine configuration.

Two layers:

- :class:`EngineConfig` is the explicit, immutable value handed to the
  telemetry scheduler at construction. The engine never reads the
  environment itself.
- :class:`MeterSettings` is the host-side loader: pydantic BaseSettings
  reading environment variables (or a ``.env`` file) for the engine fields
  plus the simulation host's own knobs, and building an EngineConfig.

CHANGELOG:
- 2026-10-15: Add line_protocol_tags and window_time_domain options (STORY-011)
- 2026-10-12: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

from smartmeter.src.models import MeterIdentity, NodeType, PayloadFormat, TransportKind

_ENGINE_FIELDS = (
    "meter_id",
    "node_type",
    "target_host",
    "target_port",
    "transport",
    "send_interval_s",
    "payload_format",
    "use_waveform_input",
    "sampling_rate_hz",
    "fundamental_freq_hz",
    "hmac_key",
    "line_protocol_tags",
    "window_time_domain",
    "connect_timeout_s",
    "write_timeout_s",
)


class EngineConfig(BaseModel):
    """Static configuration of one meter engine instance.

    Attributes:
        meter_id: Unique meter identifier.
        node_type: consumer, prosumer or grid.
        target_host: Ingestion endpoint host (e.g. a Telegraf listener).
        target_port: Ingestion endpoint port.
        transport: ``tcp`` (persistent stream) or ``udp`` (datagram).
        send_interval_s: Minimum seconds between transmissions.
        payload_format: ``line`` (line protocol) or ``json`` (structured).
        use_waveform_input: True when ticks carry waveform windows, False
            when they carry precomputed scalar quantities.
        sampling_rate_hz: Sampling rate of the waveform windows.
        fundamental_freq_hz: Nominal fundamental frequency.
        hmac_key: Optional HMAC-SHA256 key; when set, payloads are wrapped
            in a signed envelope.
        line_protocol_tags: Add meter_id/node_type tags to line records.
        window_time_domain: Compute RMS and total power over the
            Hann-windowed samples instead of the raw samples.
        connect_timeout_s: Deadline for establishing a TCP session.
        write_timeout_s: Deadline for a single TCP write.
    """

    meter_id: str = "METER_001"
    node_type: NodeType = NodeType.CONSUMER
    target_host: str = "localhost"
    target_port: int = 8094
    transport: TransportKind = TransportKind.TCP
    send_interval_s: float = 1.0
    payload_format: PayloadFormat = PayloadFormat.LINE
    use_waveform_input: bool = True
    sampling_rate_hz: float = 4800.0
    fundamental_freq_hz: float = 50.0
    hmac_key: SecretStr | None = None
    line_protocol_tags: bool = False
    window_time_domain: bool = False
    connect_timeout_s: float = 10.0
    write_timeout_s: float = 10.0

    model_config = {"frozen": True}

    @property
    def identity(self) -> MeterIdentity:
        """Meter identity embedded in every payload."""
        return MeterIdentity(meter_id=self.meter_id, node_type=self.node_type)

    @property
    def signing_key(self) -> bytes | None:
        """Raw HMAC key bytes, or None when signing is disabled."""
        if self.hmac_key is None:
            return None
        return self.hmac_key.get_secret_value().encode("utf-8")

    @field_validator("meter_id")
    @classmethod
    def meter_id_must_not_be_blank(cls, v: str) -> str:
        """Reject an empty meter identifier."""
        if not v.strip():
            raise ValueError("METER_ID must not be empty")
        return v

    @field_validator("hmac_key", mode="before")
    @classmethod
    def empty_hmac_key_disables_signing(cls, v: object) -> object:
        """Treat an empty key as 'no signing' rather than signing with b''."""
        if v is None:
            return None
        if isinstance(v, SecretStr):
            return v if v.get_secret_value() else None
        if isinstance(v, str) and not v:
            return None
        return v

    @field_validator("target_port")
    @classmethod
    def target_port_must_be_valid(cls, v: int) -> int:
        """Validate the endpoint port is in the valid TCP/UDP range."""
        if v < 1 or v > 65535:
            raise ValueError("TARGET_PORT must be between 1 and 65535")
        return v

    @field_validator("send_interval_s")
    @classmethod
    def send_interval_must_be_non_negative(cls, v: float) -> float:
        """Validate the send interval is non-negative (0 = send every tick)."""
        if v < 0:
            raise ValueError("SEND_INTERVAL_S must be >= 0")
        return v

    @field_validator("sampling_rate_hz", "fundamental_freq_hz")
    @classmethod
    def frequency_must_be_positive(cls, v: float) -> float:
        """Validate sampling rate and nominal frequency are positive."""
        if v <= 0:
            raise ValueError("frequencies must be > 0")
        return v

    @field_validator("connect_timeout_s", "write_timeout_s")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        """Validate transport deadlines are positive."""
        if v <= 0:
            raise ValueError("timeouts must be > 0")
        return v

    @model_validator(mode="after")
    def _fundamental_below_nyquist(self) -> EngineConfig:
        """The fundamental must be representable at the sampling rate."""
        if self.fundamental_freq_hz >= self.sampling_rate_hz / 2:
            raise ValueError(
                "FUNDAMENTAL_FREQ_HZ must be below the Nyquist frequency "
                f"({self.sampling_rate_hz / 2} Hz)"
            )
        return self


class MeterSettings(BaseSettings):
    """Environment-driven settings for the simulation host.

    Engine fields mirror :class:`EngineConfig` and are validated when
    :meth:`engine_config` builds it. The remaining fields drive the
    synthetic waveform source, the health file and the host loop.

    Attributes:
        tick_interval_s: Seconds between host ticks (measurement period).
        window_samples: Samples per synthesized waveform window.
        voltage_peak: Peak voltage of the synthesized waveform (V).
        current_peak: Peak current of the synthesized waveform (A).
        phase_shift_deg: Current lag behind voltage in degrees.
        third_harmonic_ratio: Third-harmonic amplitude relative to the
            fundamental current.
        tariff_per_kwh: Flat tariff for the scalar-mode cost aggregate.
        time_of_use: Tariff tier label sent in scalar mode.
        health_path: Path of the JSON health file.
        reconnect_on_failure: Let the host reopen a failed connection
            (at most once per tick).
    """

    meter_id: str = "METER_001"
    node_type: NodeType = NodeType.CONSUMER
    target_host: str = "localhost"
    target_port: int = 8094
    transport: TransportKind = TransportKind.TCP
    send_interval_s: float = 1.0
    payload_format: PayloadFormat = PayloadFormat.LINE
    use_waveform_input: bool = True
    sampling_rate_hz: float = 4800.0
    fundamental_freq_hz: float = 50.0
    hmac_key: SecretStr | None = None
    line_protocol_tags: bool = False
    window_time_domain: bool = False
    connect_timeout_s: float = 10.0
    write_timeout_s: float = 10.0

    tick_interval_s: float = 1.0
    window_samples: int = 96
    voltage_peak: float = 325.0
    current_peak: float = 10.0
    phase_shift_deg: float = 0.0
    third_harmonic_ratio: float = 0.0
    tariff_per_kwh: float = 0.25
    time_of_use: str = "standard"
    health_path: str = "/data/health.json"
    reconnect_on_failure: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("tick_interval_s")
    @classmethod
    def tick_interval_must_be_positive(cls, v: float) -> float:
        """Validate the host tick period is positive."""
        if v <= 0:
            raise ValueError("TICK_INTERVAL_S must be > 0")
        return v

    @field_validator("window_samples")
    @classmethod
    def window_samples_must_allow_transform(cls, v: int) -> int:
        """A window needs at least two samples to be analyzed."""
        if v < 2:
            raise ValueError("WINDOW_SAMPLES must be >= 2")
        return v

    @field_validator("voltage_peak", "current_peak", "third_harmonic_ratio")
    @classmethod
    def amplitude_must_be_non_negative(cls, v: float) -> float:
        """Validate synthesized amplitudes are non-negative."""
        if v < 0:
            raise ValueError("amplitudes must be >= 0")
        return v

    def engine_config(self) -> EngineConfig:
        """Build the immutable engine configuration from these settings.

        Raises:
            pydantic.ValidationError: If an engine field is invalid.
        """
        return EngineConfig(**{name: getattr(self, name) for name in _ENGINE_FIELDS})
