"""
Prometheus exporter package for Shelly Plug S smart plugs.

Keeps a registry of plugs (static configuration and optional mDNS
discovery), polls each plug's ``Switch.GetStatus`` RPC on a fixed interval,
and serves the last-known power, current, voltage and temperature readings
on a Prometheus scrape endpoint.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""
