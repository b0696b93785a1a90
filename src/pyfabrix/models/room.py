"""Facility rooms (geofences)."""

from __future__ import annotations

from pyfabrix.models._base import FabrixRecord


class GpsPoint(FabrixRecord):
    lat: float
    lng: float


class PercentPoint(FabrixRecord):
    x_pct: float
    y_pct: float


class GpsBounds(FabrixRecord):
    """Rectangular GPS region; north/south are latitudes, west/east longitudes."""

    north: float
    south: float
    west: float
    east: float

    def contains(self, lat: float, lng: float) -> bool:
        """Closed-interval containment."""
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    @property
    def center(self) -> GpsPoint:
        return GpsPoint(lat=(self.north + self.south) / 2, lng=(self.west + self.east) / 2)


class Room(FabrixRecord):
    """A named room: a percent rectangle on the floor plan plus its derived GPS box."""

    id: str
    name: str
    x_pct: float
    y_pct: float
    width_pct: float
    height_pct: float
    bounds: GpsBounds
    center: GpsPoint
