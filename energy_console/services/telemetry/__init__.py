"""
Telemetry Service (Layer 2) - Live Readings

Responsibilities:
- Sweep read-only commands on connected devices at a fixed period
- Extract voltage and power from response lines
- Drop physically impossible values (optional outlier filter)
"""

from .poller import TelemetryPoller, TelemetrySample
from .sanitizer import OutlierFilter, first_number, number_at_line, sanitize

__all__ = [
    "TelemetryPoller",
    "TelemetrySample",
    "OutlierFilter",
    "first_number",
    "number_at_line",
    "sanitize",
]
