"""
Synthetic measurement source for the simulation host.

Produces consecutive sinusoidal voltage/current windows with continuous phase
(waveform mode), or the equivalent precomputed scalar quantities (scalar
mode). Scalar mode also stands in for an upstream system that already
integrates energy, tracks maximum demand and prices consumption at a flat
tariff; the engine itself never does any of that.

CHANGELOG:
- 2026-10-16: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import math

import numpy as np

from smartmeter.src.models import ScalarReadings, WaveformWindow


class WaveformSource:
    """Sinusoidal voltage/current generator for one meter.

    ``v(t) = Vp * sin(2*pi*f*t)``,
    ``i(t) = Ip * (sin(2*pi*f*t - phi) + h3 * sin(3*(2*pi*f*t - phi)))``.

    Args:
        sampling_rate_hz: Sample rate of the generated windows.
        frequency_hz: Fundamental frequency.
        window_samples: Samples per window.
        voltage_peak: Voltage amplitude (V).
        current_peak: Fundamental current amplitude (A).
        phase_shift_deg: Current lag behind voltage (degrees).
        third_harmonic_ratio: Third-harmonic current relative to fundamental.
        tariff_per_kwh: Flat tariff used for the scalar-mode cost.
        time_of_use: Tariff tier label for scalar mode.
    """

    def __init__(
        self,
        *,
        sampling_rate_hz: float,
        frequency_hz: float,
        window_samples: int,
        voltage_peak: float,
        current_peak: float,
        phase_shift_deg: float = 0.0,
        third_harmonic_ratio: float = 0.0,
        tariff_per_kwh: float = 0.0,
        time_of_use: str = "",
    ) -> None:
        self._fs = sampling_rate_hz
        self._f = frequency_hz
        self._n = window_samples
        self._vp = voltage_peak
        self._ip = current_peak
        self._phi = math.radians(phase_shift_deg)
        self._h3 = third_harmonic_ratio
        self._tariff = tariff_per_kwh
        self._tou = time_of_use
        self._sample_index = 0
        self._energy_kwh = 0.0
        self._max_demand_kw = 0.0

    @classmethod
    def from_settings(cls, settings: object) -> WaveformSource:
        """Build a source from a MeterSettings instance."""
        return cls(
            sampling_rate_hz=settings.sampling_rate_hz,  # type: ignore[attr-defined]
            frequency_hz=settings.fundamental_freq_hz,  # type: ignore[attr-defined]
            window_samples=settings.window_samples,  # type: ignore[attr-defined]
            voltage_peak=settings.voltage_peak,  # type: ignore[attr-defined]
            current_peak=settings.current_peak,  # type: ignore[attr-defined]
            phase_shift_deg=settings.phase_shift_deg,  # type: ignore[attr-defined]
            third_harmonic_ratio=settings.third_harmonic_ratio,  # type: ignore[attr-defined]
            tariff_per_kwh=settings.tariff_per_kwh,  # type: ignore[attr-defined]
            time_of_use=settings.time_of_use,  # type: ignore[attr-defined]
        )

    def next_window(self) -> WaveformWindow:
        """Return the next window, continuing the phase of the previous one."""
        n = np.arange(self._sample_index, self._sample_index + self._n, dtype=float)
        self._sample_index += self._n
        theta = 2.0 * np.pi * self._f * n / self._fs
        voltage = self._vp * np.sin(theta)
        current = self._ip * (np.sin(theta - self._phi) + self._h3 * np.sin(3.0 * (theta - self._phi)))
        return WaveformWindow(
            voltage=voltage.tolist(),
            current=current.tolist(),
            sample_rate_hz=self._fs,
        )

    def next_readings(self, elapsed_s: float) -> ScalarReadings:
        """Return analytic scalar quantities and advance the aggregates.

        Args:
            elapsed_s: Seconds since the previous call, used to integrate
                energy.
        """
        v_rms = self._vp / math.sqrt(2)
        i_fund_rms = self._ip / math.sqrt(2)
        i_rms = i_fund_rms * math.sqrt(1.0 + self._h3**2)
        p_active = v_rms * i_fund_rms * math.cos(self._phi)
        p_reactive = v_rms * i_fund_rms * math.sin(self._phi)

        demand_kw = p_active / 1000.0
        self._energy_kwh += demand_kw * max(elapsed_s, 0.0) / 3600.0
        self._max_demand_kw = max(self._max_demand_kw, demand_kw)

        return ScalarReadings(
            p_active=p_active,
            p_reactive=p_reactive,
            voltage=v_rms,
            current=i_rms,
            frequency=self._f,
            time_of_use=self._tou,
            energy_kwh=self._energy_kwh,
            max_demand_kw=self._max_demand_kw,
            cost=self._energy_kwh * self._tariff,
        )
