"""
Deterministic environment tables.

Weather is a pure function of the wall-clock month and hour (seasonal
patterns, no randomness) so snapshots are reproducible in tests.
"""

from datetime import datetime
from typing import Optional

SUMMER_MONTHS = (6, 7, 8, 9)
WINTER_MONTHS = (12, 1, 2, 3)

# (name, x, y, radius)
LANDMARKS = [
    ("Los Santos International Airport", -1000, -3000, 500),
    ("Downtown Los Santos", 200, -900, 800),
    ("Vinewood Hills", 300, 1200, 600),
    ("Grove Street", -100, -1600, 300),
    ("Santa Monica Beach", -1500, -1000, 400),
    ("Industrial District", 1000, -2000, 700),
]

UNKNOWN_LOCATION = "Unknown Location"


def weather_for(moment: datetime) -> str:
    """Seasonal weather for a point in time."""
    month = moment.month
    hour = moment.hour

    if month in SUMMER_MONTHS:
        return "sunny" if 6 <= hour <= 18 else "clear"

    if month in WINTER_MONTHS:
        if 5 <= hour <= 7:
            return "foggy"
        if hour >= 18 or hour <= 6:
            return "cloudy"
        return "clear"

    # Spring / autumn
    if 14 <= hour <= 17:
        return "cloudy"
    if hour >= 18 or hour <= 6:
        return "clear"
    return "sunny"


def location_name(x: float, y: float) -> str:
    """First named landmark whose radius covers the point."""
    for name, lx, ly, radius in LANDMARKS:
        if ((x - lx) ** 2 + (y - ly) ** 2) ** 0.5 <= radius:
            return name
    return UNKNOWN_LOCATION


def economic_level(business_activity: Optional[float]) -> str:
    if business_activity is None:
        return "average"
    if business_activity > 70:
        return "wealthy"
    if business_activity < 30:
        return "poor"
    return "average"


def crime_level(criminal_activity: Optional[float]) -> str:
    if criminal_activity is None:
        return "medium"
    if criminal_activity > 70:
        return "high"
    if criminal_activity < 30:
        return "low"
    return "medium"
