"""State/store layer.

This package is the single source of truth for how incoming telemetry from
live streams, historical fetches and local commands is merged into a
consistent per-device and per-robot model.
"""
