"""
radius_utils.py — Great-circle distance and ring filtering for nearby targeting.

Provides:
    - Haversine distance calculation between two (lat, lon) points
    - Ring check: is a point strictly beyond an inner floor and within an
      outer radius of a centre?
    - Human-readable distance formatting for logs

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude and λ longitude in radians, R = 6371 km.

Ring semantics
==============
Nearby targeting uses a half-open ring:

    min_km < d <= max_km

The exclusive inner floor drops the reporter's own device (a zero-distance
match); the outer bound is inclusive.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6371.0


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @property
    def lat_rad(self) -> float:
        """Latitude in radians."""
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        """Longitude in radians."""
        return math.radians(self.longitude)


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Compute the great-circle distance between two points using the
    Haversine formula.

    Parameters
    ----------
    point1 : Coordinate
        Origin point (e.g. emergency location).
    point2 : Coordinate
        Target point (e.g. a user's last known location).

    Returns
    -------
    float
        Distance in kilometers (unrounded).

    Examples
    --------
    >>> round(haversine(Coordinate(10.0, 10.0), Coordinate(10.03, 10.0)), 4)
    3.3358

    >>> haversine(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))

    return EARTH_RADIUS_KM * c


# ---------------------------------------------------------------------------
# Ring filtering
# ---------------------------------------------------------------------------

def within_ring(distance_km: float, min_km: float, max_km: float) -> bool:
    """
    True iff ``min_km < distance_km <= max_km``.

    >>> within_ring(0.0, 0.05, 5.0)
    False
    >>> within_ring(0.05, 0.05, 5.0)
    False
    >>> within_ring(5.0, 0.05, 5.0)
    True
    """
    return min_km < distance_km <= max_km


def is_inside_ring(
    center: Coordinate,
    point: Coordinate,
    min_km: float,
    max_km: float,
) -> tuple[bool, float]:
    """
    Check whether ``point`` lies in the ring around ``center``.

    Returns
    -------
    (inside, distance_km) : tuple[bool, float]

    Examples
    --------
    >>> inside, dist = is_inside_ring(
    ...     Coordinate(10.0, 10.0), Coordinate(10.03, 10.0), 0.05, 5.0)
    >>> inside
    True
    """
    if max_km <= 0:
        raise ValueError(f"Radius must be positive, got {max_km}")
    if min_km < 0 or min_km >= max_km:
        raise ValueError(
            f"Inner radius must be in [0, {max_km}), got {min_km}"
        )

    dist = haversine(center, point)
    return within_ring(dist, min_km, max_km), dist


# ---------------------------------------------------------------------------
# Utility: Human-readable distance
# ---------------------------------------------------------------------------

def format_distance(km: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(0.45)
    '450 m'
    >>> format_distance(3.7266)
    '3.73 km'
    """
    if km < 1.0:
        return f"{int(km * 1000)} m"
    return f"{km:.2f} km"
