"""
Smart meter telemetry engine package.

Analyzes voltage/current waveform windows into power-quality measurands,
encodes them as line protocol or structured JSON, optionally signs them with
HMAC-SHA256, and transmits them over TCP or UDP at a bounded rate.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-001)

TODO:
- None
"""
