"""ArcGIS feature client for parcel and building-footprint polygons.

Both services are queried with a WGS84 point and return the polygons
that intersect it:
  Parcels:   Harris County HCAD parcels (MapServer)
  Buildings: H-GAC building footprints (FeatureServer)

Geometries are cached per point (1h TTL by default); callers get copies.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any

import httpx
from cachetools import TTLCache
from pyproj import Transformer
from pyproj.exceptions import CRSError, ProjError

log = logging.getLogger("gis_client")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

PARCELS_URL = os.getenv(
    "PARCELS_URL",
    "https://gis.harriscountytx.gov/arcgis/rest/services"
    "/HCAD/Parcels/MapServer/0/query",
)
BUILDINGS_URL = os.getenv(
    "BUILDINGS_URL",
    "https://gis.h-gac.com/arcgis/rest/services"
    "/Hosted/Building_Footprints/FeatureServer/0/query",
)
TIMEOUT = float(os.getenv("GIS_TIMEOUT", "15"))
CACHE_TTL = int(os.getenv("GIS_CACHE_TTL", "3600"))

WGS84 = 4326
# ESRI's own codes for Web Mercator
ESRI_WKID_ALIASES = {102100: 3857, 102113: 3857}

# ---------------------------------------------------------------------------
# Caches
# ---------------------------------------------------------------------------

_parcel_cache: TTLCache = TTLCache(maxsize=500, ttl=CACHE_TTL)
_building_cache: TTLCache = TTLCache(maxsize=500, ttl=CACHE_TTL)
_transformers: dict[int, Transformer] = {}


def clear_caches() -> None:
    """Clear all caches (for testing)."""
    _parcel_cache.clear()
    _building_cache.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _strip_jsonp(text: str) -> str:
    text = text.strip()
    if text.startswith("{") or text.startswith("["):
        return text
    try:
        start = text.index("{")
        end = text.rindex("}") + 1
        return text[start:end]
    except ValueError:
        return text


def _cache_key(lat: float, lon: float) -> tuple[float, float]:
    return round(lat, 6), round(lon, 6)


def point_query_params(lat: float, lon: float) -> dict[str, str]:
    """Query parameters for a point-intersects feature query."""
    geometry = {"x": lon, "y": lat, "spatialReference": {"wkid": WGS84}}
    return {
        "f": "json",
        "geometry": json.dumps(geometry, separators=(",", ":")),
        "geometryType": "esriGeometryPoint",
        "spatialRel": "esriSpatialRelIntersects",
        "outFields": "*",
        "returnGeometry": "true",
        "inSR": str(WGS84),
        "outSR": str(WGS84),
    }


def _source_wkid(geometry: dict[str, Any], default: dict[str, Any] | None) -> int:
    sr = geometry.get("spatialReference") or default or {}
    wkid = sr.get("latestWkid") or sr.get("wkid") or WGS84
    return ESRI_WKID_ALIASES.get(int(wkid), int(wkid))


def to_wgs84(
    geometry: dict[str, Any],
    default_sr: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Return an ESRI polygon with rings in lon/lat.

    Geometries already in WGS84 are returned unchanged; anything else is
    reprojected with pyproj. The layer-level spatial reference is used
    when the geometry carries none.
    """
    wkid = _source_wkid(geometry, default_sr)
    if wkid == WGS84:
        return geometry

    if wkid not in _transformers:
        _transformers[wkid] = Transformer.from_crs(f"EPSG:{wkid}", "EPSG:4326", always_xy=True)
    transformer = _transformers[wkid]

    rings = []
    for ring in geometry.get("rings", []):
        pts = []
        for pt in ring:
            lon, lat = transformer.transform(pt[0], pt[1])
            pts.append([lon, lat])
        rings.append(pts)
    log.debug("Reprojected %d rings from EPSG:%d", len(rings), wkid)
    return {"rings": rings, "spatialReference": {"wkid": WGS84}}


# ---------------------------------------------------------------------------
# Feature query
# ---------------------------------------------------------------------------

async def _query_geometries(
    client: httpx.AsyncClient,
    url: str,
    lat: float,
    lon: float,
) -> list[dict[str, Any]] | None:
    """Polygon geometries intersecting the point, or None on failure."""
    try:
        resp = await client.get(url, params=point_query_params(lat, lon), timeout=TIMEOUT)
        if resp.status_code != 200:
            log.warning("%s returned HTTP %d", url, resp.status_code)
            return None
        data = json.loads(_strip_jsonp(resp.text))
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("Feature query failed (%s): %s", url, exc)
        return None

    if not isinstance(data, dict):
        log.warning("Unexpected feature response from %s", url)
        return None
    if "error" in data:
        log.warning("ArcGIS error from %s: %s", url, data["error"])
        return None

    layer_sr = data.get("spatialReference")
    geometries = []
    for feat in data.get("features") or []:
        geom = feat.get("geometry") if isinstance(feat, dict) else None
        if not isinstance(geom, dict):
            if geom:
                log.warning("Skipping feature with unusable geometry: %r", geom)
            continue
        if not geom.get("rings"):
            continue
        try:
            geometries.append(to_wgs84(geom, layer_sr))
        except (CRSError, ProjError, TypeError, ValueError, IndexError) as exc:
            log.warning("Skipping feature with unusable geometry: %s", exc)
    return geometries


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def fetch_parcel_geometry(
    client: httpx.AsyncClient,
    lat: float,
    lon: float,
) -> dict[str, Any] | None:
    """Parcel polygon containing the point, or None."""
    key = _cache_key(lat, lon)
    if key in _parcel_cache:
        log.info("Parcel cache HIT for %s", key)
        return copy.deepcopy(_parcel_cache[key])

    log.info("Querying parcel at (%.6f, %.6f)...", lat, lon)
    geometries = await _query_geometries(client, PARCELS_URL, lat, lon)
    if geometries is None:
        return None

    parcel = geometries[0] if geometries else None
    _parcel_cache[key] = parcel
    return copy.deepcopy(parcel)


async def fetch_building_geometries(
    client: httpx.AsyncClient,
    lat: float,
    lon: float,
) -> list[dict[str, Any]] | None:
    """All building-footprint polygons at the point.

    Returns an empty list when nothing is there, None when the service
    could not be queried.
    """
    key = _cache_key(lat, lon)
    if key in _building_cache:
        log.info("Building cache HIT for %s", key)
        return copy.deepcopy(_building_cache[key])

    log.info("Querying building footprints at (%.6f, %.6f)...", lat, lon)
    geometries = await _query_geometries(client, BUILDINGS_URL, lat, lon)
    if geometries is None:
        return None

    _building_cache[key] = geometries
    return copy.deepcopy(geometries)
