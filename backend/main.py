"""FastAPI backend wiring geocode + gis_client + area_engine.

Run: uvicorn backend.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Add project root to path so we can import area_engine
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from area_engine import area_from_geometry, compute_total_area, total_area_from_geometries
from backend.geocode import resolve_location
from backend.gis_client import clear_caches, fetch_building_geometries, fetch_parcel_geometry

load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-8s %(message)s")
log = logging.getLogger("api")

# ---------------------------------------------------------------------------
# Lifespan: manage httpx client
# ---------------------------------------------------------------------------

_http_client: httpx.AsyncClient | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _http_client
    _http_client = httpx.AsyncClient(follow_redirects=True)
    if not os.getenv("AZURE_MAPS_KEY"):
        log.warning("AZURE_MAPS_KEY not set; only coordinates and map URLs will resolve")
    log.info("Server started")
    yield
    await _http_client.aclose()
    _http_client = None
    log.info("Server stopped")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Lot Area API",
    description="Parcel and building-footprint square footage from an address",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class AnalyzeRequest(BaseModel):
    query: str  # street address, coordinates, or Google Maps URL


class AreaRequest(BaseModel):
    geometry: dict[str, Any] | None = None  # ESRI JSON or GeoJSON polygon
    polygons: list[list[list[list[float]]]] | None = None  # [polygon][ring][point][lon, lat]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.post("/api/analyze")
async def analyze(req: AnalyzeRequest) -> dict:
    """Resolve a location, then measure the parcel and building footprints there."""
    if not _http_client:
        raise HTTPException(500, "Server not ready")

    query = req.query.strip()
    coords = await resolve_location(_http_client, query)
    if not coords:
        raise HTTPException(400, "Could not resolve location. Enter a street address or coordinates (lat, lng).")

    lat, lng = coords
    log.info("Resolved %r to lat=%.6f, lng=%.6f", query, lat, lng)

    try:
        parcel_geom, building_geoms = await asyncio.gather(
            fetch_parcel_geometry(_http_client, lat, lng),
            fetch_building_geometries(_http_client, lat, lng),
        )
    except Exception as exc:
        log.error("Analyze error: %s", exc, exc_info=True)
        raise HTTPException(500, str(exc))

    parcel_sqft = area_from_geometry(parcel_geom)
    buildings = building_geoms or []
    building_sqft = total_area_from_geometries(buildings)
    log.info("Parcel: %s sqft, buildings: %s sqft (%d features)", parcel_sqft, building_sqft, len(buildings))

    return {
        "coordinates": {"lat": lat, "lng": lng},
        "parcel_sqft": parcel_sqft,
        "building_sqft": building_sqft,
        "building_count": len(buildings),
        "data_sources": {
            "parcel_found": parcel_geom is not None,
            "building_service": building_geoms is not None,
        },
    }


@app.post("/api/area")
async def area(req: AreaRequest) -> dict:
    """Square footage of posted geometry (no network calls)."""
    if req.polygons is not None:
        return {"area_sqft": compute_total_area(req.polygons)}
    if req.geometry is not None:
        return {"area_sqft": area_from_geometry(req.geometry)}
    raise HTTPException(400, "Provide either 'geometry' or 'polygons'")


@app.post("/api/cache/clear")
async def clear_cache() -> dict:
    """Clear all caches (admin/debug)."""
    clear_caches()
    return {"status": "cleared"}


@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "http_client": _http_client is not None,
        "geocoder": bool(os.getenv("AZURE_MAPS_KEY")),
    }
