"""
Shared test fixtures for meter engine tests.

Provides environment isolation for MeterSettings tests and helpers that
build sinusoidal waveform windows.

CHANGELOG:
- 2026-10-13: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import math

import pytest
from smartmeter.src.models import WaveformWindow

# All MeterSettings environment variable names, used for cleanup.
_ALL_METER_ENV_VARS = (
    "METER_ID",
    "NODE_TYPE",
    "TARGET_HOST",
    "TARGET_PORT",
    "TRANSPORT",
    "SEND_INTERVAL_S",
    "PAYLOAD_FORMAT",
    "USE_WAVEFORM_INPUT",
    "SAMPLING_RATE_HZ",
    "FUNDAMENTAL_FREQ_HZ",
    "HMAC_KEY",
    "LINE_PROTOCOL_TAGS",
    "WINDOW_TIME_DOMAIN",
    "CONNECT_TIMEOUT_S",
    "WRITE_TIMEOUT_S",
    "TICK_INTERVAL_S",
    "WINDOW_SAMPLES",
    "VOLTAGE_PEAK",
    "CURRENT_PEAK",
    "PHASE_SHIFT_DEG",
    "THIRD_HARMONIC_RATIO",
    "TARIFF_PER_KWH",
    "TIME_OF_USE",
    "HEALTH_PATH",
    "RECONNECT_ON_FAILURE",
)


@pytest.fixture(autouse=True)
def _clean_meter_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all meter env vars and isolate from .env files before each test."""
    for var in _ALL_METER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


def sine_window(
    *,
    v_peak: float = 325.0,
    i_peak: float = 10.0,
    phase_deg: float = 0.0,
    freq_hz: float = 50.0,
    fs_hz: float = 4800.0,
    n: int = 96,
) -> WaveformWindow:
    """Voltage ``v_peak*sin(wt)`` and current ``i_peak*sin(wt - phase)``."""
    phi = math.radians(phase_deg)
    voltage = [v_peak * math.sin(2 * math.pi * freq_hz * k / fs_hz) for k in range(n)]
    current = [i_peak * math.sin(2 * math.pi * freq_hz * k / fs_hz - phi) for k in range(n)]
    return WaveformWindow(voltage=voltage, current=current, sample_rate_hz=fs_hz)


@pytest.fixture()
def one_cycle_window() -> WaveformWindow:
    """96 samples at 4800 Hz: exactly one 50 Hz cycle, v and i in phase."""
    return sine_window()
