"""
units.py — Pollutant unit normalisation shared by the air-quality adapters.

Canonical units: pm25 µg/m³, no2 µg/m³, co mg/m³.

Providers disagree:
  - OpenAQ reports raw concentrations in whatever the station uses
    (µg/m³, ppm, ppb).
  - WAQI reports US-EPA AQI *sub-indices*, not concentrations; they are
    inverted through the EPA breakpoint tables below.
Gas conversions assume 25 °C and 1 atm.
"""

from __future__ import annotations

from typing import Optional

# ppm → canonical unit, per pollutant
_PPM_FACTORS = {
    "no2": 1880.0,   # ppm NO₂ → µg/m³
    "co":  1.145,    # ppm CO  → mg/m³
}

# (C_low, C_high, I_low, I_high) in the EPA native unit of each pollutant
_EPA_BREAKPOINTS: dict[str, list[tuple[float, float, int, int]]] = {
    "pm25": [   # µg/m³, 24-h
        (0.0, 12.0, 0, 50),
        (12.1, 35.4, 51, 100),
        (35.5, 55.4, 101, 150),
        (55.5, 150.4, 151, 200),
        (150.5, 250.4, 201, 300),
        (250.5, 350.4, 301, 400),
        (350.5, 500.4, 401, 500),
    ],
    "no2": [    # ppb, 1-h
        (0, 53, 0, 50),
        (54, 100, 51, 100),
        (101, 360, 101, 150),
        (361, 649, 151, 200),
        (650, 1249, 201, 300),
        (1250, 1649, 301, 400),
        (1650, 2049, 401, 500),
    ],
    "co": [     # ppm, 8-h
        (0.0, 4.4, 0, 50),
        (4.5, 9.4, 51, 100),
        (9.5, 12.4, 101, 150),
        (12.5, 15.4, 151, 200),
        (15.5, 30.4, 201, 300),
        (30.5, 40.4, 301, 400),
        (40.5, 50.4, 401, 500),
    ],
}

# EPA native unit → canonical unit
_EPA_TO_CANONICAL = {
    "pm25": 1.0,     # already µg/m³
    "no2":  1.88,    # ppb → µg/m³
    "co":   1.145,   # ppm → mg/m³
}


def normalise_concentration(parameter: str, value: float, unit: str) -> Optional[float]:
    """
    Convert an OpenAQ-style (parameter, value, unit) triple to canonical units.

    Returns None for unknown units or negative sensor glitches.
    """
    if value < 0:
        return None
    unit = (unit or "").strip().lower().replace("μ", "µ")

    if unit in ("µg/m³", "µg/m3", "ug/m3", "ug/m³"):
        return value / 1000.0 if parameter == "co" else value
    if unit in ("mg/m³", "mg/m3"):
        return value if parameter == "co" else value * 1000.0
    if unit == "ppm" and parameter in _PPM_FACTORS:
        return value * _PPM_FACTORS[parameter]
    if unit == "ppb" and parameter in _PPM_FACTORS:
        return value / 1000.0 * _PPM_FACTORS[parameter]
    return None


def aqi_to_concentration(parameter: str, aqi: float) -> Optional[float]:
    """
    Invert a US-EPA AQI sub-index to a canonical concentration.

    Linear inside the matching breakpoint band; None for unknown pollutants
    or indices outside [0, 500].
    """
    table = _EPA_BREAKPOINTS.get(parameter)
    if table is None or aqi < 0 or aqi > 500:
        return None
    for c_low, c_high, i_low, i_high in table:
        if aqi <= i_high:
            native = c_low + (aqi - i_low) * (c_high - c_low) / (i_high - i_low)
            return round(max(native, 0.0) * _EPA_TO_CANONICAL[parameter], 3)
    return None
