"""
Powerbox daemon package for CT phase resolution.

Consumes per-cycle telemetry from a 28-channel Connect metering device,
aggregates it over a fixed interval, derives installation topology and
per-channel phase/direction associations, and writes the resulting CT
configuration back to the device over MQTT.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-101)

TODO:
- None
"""
