"""
geo_math.py — Distance, bounding-box and map-zoom helpers.

Two Earth radii live here on purpose:
  EARTH_RADIUS_M         mean radius, used for Haversine distances
  WEB_MERCATOR_RADIUS_M  equatorial radius, used for zoom / viewport math

Known limitations (not corrected):
  - bounding_box_from_radius degenerates near the poles (cos(lat) → 0).
  - Nothing here handles boxes that cross the ±180° meridian.

USAGE
─────
    from airwatch.models.poi import GeoPoint
    from airwatch.services.geo_math import distance_meters

    distance_meters(GeoPoint(lat=3.139, lon=101.6869), GeoPoint(lat=3.15, lon=101.7))
"""

from __future__ import annotations

import math

from airwatch.models.poi import BoundingBox, GeoPoint

EARTH_RADIUS_M        = 6_371_000.0
WEB_MERCATOR_RADIUS_M = 6_378_137.0

KM_PER_DEGREE_LAT = 111.0
TILE_SIZE = 256
METERS_PER_PIXEL_ZOOM_0 = WEB_MERCATOR_RADIUS_M * 2 * math.pi / TILE_SIZE

MIN_ZOOM = 1
MAX_ZOOM = 18

# Approximate viewport coverage radius (km) per integer zoom level.
ZOOM_RADIUS_KM: dict[int, float] = {
    1: 2500,
    2: 1500,
    3: 800,
    4: 500,
    5: 300,
    6: 200,
    7: 150,
    8: 100,
    9: 70,
    10: 50,
    11: 30,
    12: 15,
    13: 10,
    14: 6,
    15: 3,
    16: 1.5,
    17: 0.8,
    18: 0.4,
}

ZOOM_PRESETS: dict[str, dict] = {
    "city":      {"zoom": 12, "radius_km": 15,   "label": "City (15km)"},
    "metro":     {"zoom": 10, "radius_km": 50,   "label": "Metro (50km)"},
    "region":    {"zoom": 8,  "radius_km": 100,  "label": "Region (100km)"},
    "country":   {"zoom": 6,  "radius_km": 200,  "label": "Country (200km)"},
    "continent": {"zoom": 4,  "radius_km": 500,  "label": "Continent (500km)"},
    "global":    {"zoom": 2,  "radius_km": 1500, "label": "Global (1500km)"},
}


# ── Distances ────────────────────────────────────────────────────────────────

def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in metres (Haversine, mean Earth radius)."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lon - a.lon)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Clamp: float error can push h a hair above 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bounding_box_from_radius(center: GeoPoint, radius_km: float) -> BoundingBox:
    """
    Approximate box enclosing a circle of radius_km around center.

    Longitude delta blows up towards the poles; latitudes are clamped to the
    valid range but longitudes are clamped to ±180 without wrapping.
    """
    lat_delta = radius_km / KM_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(center.lat))
    lon_delta = radius_km / (KM_PER_DEGREE_LAT * cos_lat) if cos_lat > 1e-12 else 180.0

    return BoundingBox(
        north=min(90.0, center.lat + lat_delta),
        south=max(-90.0, center.lat - lat_delta),
        east=min(180.0, center.lon + lon_delta),
        west=max(-180.0, center.lon - lon_delta),
    )


# ── Zoom ↔ radius ────────────────────────────────────────────────────────────

def zoom_to_radius_km(zoom: float) -> float:
    """Coverage radius for a (possibly fractional) zoom, interpolated and clamped."""
    z = max(float(MIN_ZOOM), min(float(MAX_ZOOM), zoom))
    lower = math.floor(z)
    upper = math.ceil(z)
    if lower == upper:
        return ZOOM_RADIUS_KM[int(lower)]
    lower_r = ZOOM_RADIUS_KM[int(lower)]
    upper_r = ZOOM_RADIUS_KM[int(upper)]
    return lower_r + (upper_r - lower_r) * (z - lower)


def radius_km_to_zoom(radius_km: float) -> float:
    """
    Inverse of zoom_to_radius_km.

    Walks the step table and interpolates inside the bracketing step.
    Radii beyond the table clamp to zoom 1 / 18.
    """
    if radius_km >= ZOOM_RADIUS_KM[MIN_ZOOM]:
        return float(MIN_ZOOM)
    if radius_km <= ZOOM_RADIUS_KM[MAX_ZOOM]:
        return float(MAX_ZOOM)

    for zoom in range(MIN_ZOOM, MAX_ZOOM):
        r_hi = ZOOM_RADIUS_KM[zoom]        # larger radius, smaller zoom
        r_lo = ZOOM_RADIUS_KM[zoom + 1]
        if r_lo <= radius_km <= r_hi:
            return zoom + (r_hi - radius_km) / (r_hi - r_lo)
    return float(MAX_ZOOM)


def coverage_radius_meters(zoom: float, lat: float = 0.0, viewport_width: int = 1024) -> float:
    """Half the viewport width in metres at this zoom/latitude (Web Mercator)."""
    meters_per_pixel = METERS_PER_PIXEL_ZOOM_0 * math.cos(math.radians(lat)) / (2 ** zoom)
    return viewport_width * meters_per_pixel / 2


def zoom_for_bounding_box(box: BoundingBox, viewport_width: int = 1024, viewport_height: int = 768) -> float:
    """Largest zoom at which the whole box fits in the viewport."""
    lat_diff = box.north - box.south
    lon_diff = box.east - box.west
    center_lat = (box.north + box.south) / 2

    lat_zoom = math.log2((viewport_height * 360) / (lat_diff * TILE_SIZE))
    lon_zoom = math.log2(
        (viewport_width * 360) / (lon_diff * TILE_SIZE * math.cos(math.radians(center_lat)))
    )
    return min(lat_zoom, lon_zoom)


def best_preset_for_zoom(zoom: float) -> dict:
    return min(ZOOM_PRESETS.values(), key=lambda p: abs(p["zoom"] - zoom))


# ── Formatting ───────────────────────────────────────────────────────────────

def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.1f} km"


def format_radius(radius_km: float) -> str:
    if radius_km >= 1000:
        return f"{radius_km / 1000:.1f}k km"
    if radius_km >= 1:
        return f"{radius_km:.1f} km"
    return f"{round(radius_km * 1000)} m"
