"""
Pure signal analyzer: waveform window -> power-quality measurands.

Steps, for N simultaneous voltage and current samples:

1. Hann window ``w[n] = 0.5 * (1 - cos(2*pi*n / (N-1)))`` applied to both
   sequences. This limits spectral leakage when the window does not hold an
   integer number of fundamental cycles; it is not an anti-alias filter.
2. True RMS ``sqrt(mean(x**2))`` and total active power ``mean(v*i)``
   (all harmonic cross-terms included). Computed over the raw samples by
   default, or over the windowed samples when ``window_time_domain`` is set,
   in which case the window's energy-scaling bias is left uncorrected.
3. FFT of both windowed sequences; the fundamental sits in bin
   ``k = floor(f_nominal * N / fs + 0.5)``, wrapped into ``[0, N)``.
4. Fundamental phasors ``V1 = V[k]``, ``I1 = I[k]``:
   ``Vrms_fund = |V1| / N / sqrt(2)``, ``Irms_fund = |I1| / N / sqrt(2)``,
   ``S = Vrms_fund * Irms_fund``, and ``P + jQ = V1 * conj(I1) / (2 * N**2)``
   so that ``P**2 + Q**2 == S**2``.

The reported frequency is the nominal frequency; no estimation is made.

This is a pure function: no I/O, no clock, no state.

CHANGELOG:
- 2026-10-15: Add window_time_domain switch for windowed RMS (STORY-011)
- 2026-10-13: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from smartmeter.src.errors import InvalidWindow
from smartmeter.src.models import MeasurementResult, WaveformWindow

MIN_SAMPLES = 2
"""Smallest window the Hann window and DFT are defined for."""


def hann_window(n: int) -> np.ndarray:
    """Symmetric Hann coefficients ``0.5 * (1 - cos(2*pi*k / (n-1)))``."""
    k = np.arange(n, dtype=float)
    return 0.5 * (1.0 - np.cos(2.0 * np.pi * k / (n - 1)))


def fundamental_bin(nominal_freq_hz: float, n: int, sample_rate_hz: float) -> int:
    """Zero-based DFT bin of the nominal fundamental, wrapped into ``[0, n)``.

    Halves round up, not to even.
    """
    return math.floor(nominal_freq_hz * n / sample_rate_hz + 0.5) % n


def _validate(voltage: Sequence[float], current: Sequence[float], sample_rate_hz: float) -> tuple[np.ndarray, np.ndarray]:
    """Convert the two sequences to float arrays or raise InvalidWindow."""
    if len(voltage) == 0 or len(current) == 0:
        raise InvalidWindow("Waveform inputs must be non-empty")
    if len(voltage) != len(current):
        raise InvalidWindow(
            f"Waveform inputs must have equal length (voltage={len(voltage)}, current={len(current)})"
        )
    if len(voltage) < MIN_SAMPLES:
        raise InvalidWindow(f"Waveform window needs at least {MIN_SAMPLES} samples, got {len(voltage)}")
    if not sample_rate_hz > 0:
        raise InvalidWindow(f"Sample rate must be > 0, got {sample_rate_hz}")

    v = np.asarray(voltage, dtype=float)
    i = np.asarray(current, dtype=float)
    if not (np.isfinite(v).all() and np.isfinite(i).all()):
        raise InvalidWindow("Waveform inputs contain non-finite samples")
    return v, i


def analyze(
    window: WaveformWindow,
    nominal_freq_hz: float,
    *,
    window_time_domain: bool = False,
) -> MeasurementResult:
    """Derive RMS, power and fundamental-phasor quantities from one window.

    Args:
        window: Simultaneous voltage/current samples and their sample rate.
        nominal_freq_hz: Nominal fundamental frequency; selects the DFT bin
            and is reported as the measured frequency.
        window_time_domain: Compute RMS and total active power over the
            Hann-windowed sequences instead of the raw samples.

    Returns:
        The measurement result for this window.

    Raises:
        InvalidWindow: If the sequences are empty, of unequal length, shorter
            than two samples, or contain non-finite values.
    """
    v, i = _validate(window.voltage, window.current, window.sample_rate_hz)
    n = v.size

    w = hann_window(n)
    v_w = v * w
    i_w = i * w

    v_td, i_td = (v_w, i_w) if window_time_domain else (v, i)
    v_rms = math.sqrt(np.mean(v_td**2))
    i_rms = math.sqrt(np.mean(i_td**2))
    p_active_total = float(np.mean(v_td * i_td))

    k = fundamental_bin(nominal_freq_hz, n, window.sample_rate_hz)
    v1 = complex(np.fft.fft(v_w)[k])
    i1 = complex(np.fft.fft(i_w)[k])

    v_rms_fund = abs(v1) / n / math.sqrt(2)
    i_rms_fund = abs(i1) / n / math.sqrt(2)
    s_fund = v_rms_fund * i_rms_fund

    # Same 1/(2 N^2) scale as S, so P^2 + Q^2 == S^2.
    product = v1 * i1.conjugate() / (2 * n**2)

    return MeasurementResult(
        v_rms=v_rms,
        i_rms=i_rms,
        p_active_total=p_active_total,
        p_active_fund=product.real,
        q_fund=product.imag,
        s_fund=s_fund,
        v_rms_fund=v_rms_fund,
        i_rms_fund=i_rms_fund,
        frequency=float(nominal_freq_hz),
        sample_count=n,
    )
