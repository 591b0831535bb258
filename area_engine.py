"""Polygon area engine for parcel and building-footprint geometry.

Takes polygons in longitude/latitude (as returned by ArcGIS feature
queries) and returns their area in whole square feet.

Rings are projected to spherical Web Mercator and measured with the
shoelace formula. Ring orientation, measured on the raw lon/lat
coordinates, decides whether a ring is an outer boundary (added) or a
hole (subtracted). Whichever orientation the largest ring has is taken
as "outer", so ESRI (clockwise outer) and GeoJSON (counter-clockwise
outer) rings both measure correctly. This departs from a plain
"negative area means subtract" rule only for clockwise-outer polygons.

Usage:
    from area_engine import compute_area, compute_total_area
    sqft = compute_area(geometry["rings"])
"""

from __future__ import annotations

import enum
import logging
import math
from typing import Any, Iterable, NamedTuple, Sequence

import numpy as np

log = logging.getLogger("area_engine")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M = 6_378_137.0          # spherical Web Mercator (EPSG:3857)
SQM_TO_SQFT = 10.76391041671
MIN_RING_POINTS = 3


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class GeoPoint(NamedTuple):
    longitude: float
    latitude: float


class ProjectedPoint(NamedTuple):
    x: float
    y: float


class RingKind(enum.Enum):
    OUTER = "outer"
    HOLE = "hole"


class TaggedRing(NamedTuple):
    kind: RingKind
    ring: Sequence[Sequence[float]]


# A ring is any sequence of [lon, lat] pairs (GeoPoint included),
# a polygon is a sequence of rings.
Ring = Sequence[Sequence[float]]
Polygon = Sequence[Ring]


# ---------------------------------------------------------------------------
# Ring helpers
# ---------------------------------------------------------------------------

def _ring_array(ring: Any) -> np.ndarray | None:
    """Return an (n, 2) float array for a usable ring, else None."""
    try:
        arr = np.array(ring, dtype=float)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 2 or arr.shape[1] < 2 or arr.shape[0] < MIN_RING_POINTS:
        return None
    arr = arr[:, :2]  # drop z/m values
    if not np.isfinite(arr).all():
        return None
    if (np.abs(arr[:, 0]) > 180).any() or (np.abs(arr[:, 1]) > 90).any():
        return None
    return arr


def _project_array(coords: np.ndarray) -> np.ndarray:
    lam = np.radians(coords[:, 0])
    phi = np.radians(coords[:, 1])
    # South pole gives log(0); let it become -inf and fail the finiteness check
    with np.errstate(divide="ignore", invalid="ignore"):
        x = EARTH_RADIUS_M * lam
        y = EARTH_RADIUS_M * np.log(np.tan(np.pi / 4 + phi / 2))
    return np.column_stack((x, y))


def project(point: Sequence[float]) -> ProjectedPoint:
    """Project a lon/lat point to spherical Web Mercator metres."""
    xy = _project_array(np.array([point], dtype=float))[0]
    return ProjectedPoint(float(xy[0]), float(xy[1]))


def signed_planar_area(ring: Ring) -> float:
    """Signed shoelace area computed directly on lon/lat.

    Counter-clockwise rings are positive, clockwise rings negative. Only
    the sign is meaningful; the magnitude is in square degrees. Returns
    0.0 for rings that are too short or malformed.
    """
    arr = _ring_array(ring)
    if arr is None:
        return 0.0
    x, y = arr[:, 0], arr[:, 1]
    x_prev, y_prev = np.roll(x, 1), np.roll(y, 1)
    return float(np.sum((x_prev - x) * (y + y_prev)) / 2)


def classify_ring(ring: Ring, outer_sign: int = 1) -> TaggedRing:
    """Tag a ring as OUTER or HOLE from its orientation.

    ``outer_sign`` is the orientation sign of an outer boundary: +1 for
    counter-clockwise outers (GeoJSON), -1 for clockwise ones (ESRI).
    """
    signed = signed_planar_area(ring)
    kind = RingKind.HOLE if signed * outer_sign < 0 else RingKind.OUTER
    return TaggedRing(kind, ring)


def classify_rings(polygon: Polygon) -> list[TaggedRing]:
    """Tag every usable ring of a polygon.

    The ring with the largest lon/lat area sets which orientation counts
    as outer, so a polygon wound entirely clockwise measures the same as
    its counter-clockwise mirror. Malformed rings are dropped.
    """
    if polygon is None or isinstance(polygon, (str, bytes, dict)):
        return []
    try:
        rings = list(polygon)
    except TypeError:
        return []
    usable = []
    for idx, ring in enumerate(rings):
        if _ring_array(ring) is None:
            log.debug("Skipping malformed ring %d", idx)
            continue
        usable.append(ring)
    if not usable:
        return []

    signs = [signed_planar_area(ring) for ring in usable]
    reference = max(signs, key=abs)
    outer_sign = -1 if reference < 0 else 1
    return [classify_ring(ring, outer_sign) for ring in usable]


def ring_area_m2(ring: Ring) -> float:
    """Unsigned area of one ring in square metres, after projection."""
    arr = _ring_array(ring)
    if arr is None:
        return 0.0
    xy = _project_array(arr)
    x, y = xy[:, 0], xy[:, 1]
    with np.errstate(invalid="ignore"):
        cross = x * np.roll(y, -1) - np.roll(x, -1) * y
    return float(abs(np.sum(cross)) / 2)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compute_area(polygon: Polygon) -> int | None:
    """Area of one polygon in whole square feet.

    Rings with fewer than three points (or unusable coordinates)
    contribute nothing. Returns None when the net area is zero,
    negative or not finite.
    """
    total_m2 = 0.0
    for kind, ring in classify_rings(polygon):
        m2 = ring_area_m2(ring)
        if kind is RingKind.HOLE:
            total_m2 -= m2
        else:
            total_m2 += m2

    total_sqft = total_m2 * SQM_TO_SQFT
    if not math.isfinite(total_sqft) or total_sqft <= 0:
        return None
    rounded = int(math.floor(total_sqft + 0.5))
    return rounded if rounded > 0 else None


def compute_total_area(polygons: Iterable[Polygon]) -> int | None:
    """Sum of compute_area over several polygons; unavailable counts as 0.

    Returns None when there are no polygons or none of them has a usable
    area.
    """
    total = 0
    found = False
    for polygon in polygons:
        area = compute_area(polygon)
        if area is None:
            continue
        total += area
        found = True
    return total if found else None


# ---------------------------------------------------------------------------
# Geometry adapters (ESRI JSON and GeoJSON)
# ---------------------------------------------------------------------------

def rings_from_geometry(geometry: dict[str, Any] | None) -> list[Ring]:
    """Flatten a polygon geometry into its list of rings.

    Accepts ESRI JSON (``{"rings": [...]}``) and GeoJSON ``Polygon`` or
    ``MultiPolygon``. Anything else yields an empty list.
    """
    if not isinstance(geometry, dict):
        return []
    if isinstance(geometry.get("rings"), list):
        return list(geometry["rings"])

    gtype = geometry.get("type")
    coords = geometry.get("coordinates")
    if not isinstance(coords, list):
        return []
    if gtype == "Polygon":
        return list(coords)
    if gtype == "MultiPolygon":
        return [ring for poly in coords if isinstance(poly, list) for ring in poly]
    return []


def area_from_geometry(geometry: dict[str, Any] | None) -> int | None:
    """Square feet for an ESRI or GeoJSON polygon geometry, or None."""
    if isinstance(geometry, dict) and geometry.get("type") == "MultiPolygon":
        coords = geometry.get("coordinates")
        if not isinstance(coords, list):
            return None
        return compute_total_area(p for p in coords if isinstance(p, list))
    rings = rings_from_geometry(geometry)
    if not rings:
        return None
    return compute_area(rings)


def total_area_from_geometries(geometries: Iterable[dict[str, Any] | None]) -> int | None:
    """Sum of area_from_geometry over features; unusable ones count as 0."""
    areas = [area_from_geometry(g) for g in geometries]
    usable = [a for a in areas if a is not None]
    return sum(usable) if usable else None
