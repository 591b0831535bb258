"""Resolve a free-text location into (latitude, longitude).

Supports:
  - Google Maps URLs (pin "!3d..!4d.." or viewport "@lat,lng")
  - Raw coordinates: "29.7604, -95.3698" or "29.7604 -95.3698"
  - Street addresses, via Azure Maps address search
"""

from __future__ import annotations

import logging
import os
import re

import httpx

log = logging.getLogger("geocode")

AZURE_SEARCH_URL = "https://atlas.microsoft.com/search/address/json"
MIN_ADDRESS_LENGTH = 6


def _in_range(lat: float, lng: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lng <= 180


def parse_coordinates(text: str) -> tuple[float, float] | None:
    """Extract lat/lng from a Google Maps URL or coordinate string.

    Returns:
        (latitude, longitude) or None if parsing fails.
    """
    text = text.strip()

    # Pin location wins over the viewport centre
    lat_m = re.search(r'!3d(-?\d+\.?\d*)', text)
    lng_m = re.search(r'!4d(-?\d+\.?\d*)', text)
    if lat_m and lng_m:
        lat, lng = float(lat_m.group(1)), float(lng_m.group(1))
        return (lat, lng) if _in_range(lat, lng) else None

    m = re.search(r'@(-?\d+\.?\d*),(-?\d+\.?\d*)', text)
    if m:
        lat, lng = float(m.group(1)), float(m.group(2))
        return (lat, lng) if _in_range(lat, lng) else None

    m = re.match(r'^\s*(-?\d+\.?\d*)\s*[,\s]\s*(-?\d+\.?\d*)\s*$', text)
    if m:
        lat, lng = float(m.group(1)), float(m.group(2))
        if _in_range(lat, lng):
            return lat, lng

    return None


async def geocode_address(
    client: httpx.AsyncClient,
    address: str,
    api_key: str | None = None,
) -> tuple[float, float] | None:
    """Look up a street address with Azure Maps.

    Returns:
        (latitude, longitude) of the best match, or None.
    """
    address = address.strip()
    if len(address) < MIN_ADDRESS_LENGTH:
        return None

    key = api_key or os.getenv("AZURE_MAPS_KEY")
    if not key:
        log.warning("AZURE_MAPS_KEY not set, cannot geocode %r", address)
        return None

    params = {
        "api-version": "1.0",
        "countrySet": "US",
        "limit": 1,
        "subscription-key": key,
        "query": address,
    }
    try:
        resp = await client.get(AZURE_SEARCH_URL, params=params, timeout=15)
        if resp.status_code != 200:
            log.warning("Geocoder returned HTTP %d for %r", resp.status_code, address)
            return None
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("Geocoding failed for %r: %s", address, exc)
        return None

    results = data.get("results") if isinstance(data, dict) else None
    if not results or not isinstance(results, list) or not isinstance(results[0], dict):
        return None

    position = results[0].get("position")
    if not isinstance(position, dict):
        return None
    try:
        lat, lng = float(position["lat"]), float(position["lon"])
    except (KeyError, TypeError, ValueError):
        log.warning("Geocoder returned an unusable position for %r: %s", address, position)
        return None
    if not _in_range(lat, lng):
        return None
    return lat, lng


async def resolve_location(
    client: httpx.AsyncClient,
    query: str,
    api_key: str | None = None,
) -> tuple[float, float] | None:
    """Coordinates or map URL first, address search as fallback."""
    coords = parse_coordinates(query)
    if coords:
        return coords
    return await geocode_address(client, query, api_key)
