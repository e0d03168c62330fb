# ========================
# src/taxiflow/pipeline/cleaning.py
# ========================

"""
Taxi Trip Cleaning Module

Declared schema of yellow-taxi trip records, the row-selection rules that
drop implausible trips, and the derived columns used by the analysis passes
(duration, straight-line distance, calendar fields, tip percentage).
"""

import math
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .dataset import Row, RowPredicate
from .schema import Schema, categorical, numeric, text, timestamp
from .transforms import AddColumn, FillNulls, Transform, compose
from ..utils.config import Config

logger = logging.getLogger(__name__)

VENDOR_LEVELS = ("1", "2")
PAYMENT_TYPE_LEVELS = ("1", "2", "3", "4", "5", "6")
WEEKDAY_LEVELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

PAYMENT_METHODS = {
    "1": "Credit card",
    "2": "Cash",
    "3": "No charge",
    "4": "Dispute",
    "5": "Unknown",
    "6": "Voided trip",
}
PAYMENT_METHOD_LEVELS = tuple(PAYMENT_METHODS.values())

EARTH_RADIUS_MILES = 3958.8

TAXI_TRIP_SCHEMA = Schema((
    categorical("VendorID", VENDOR_LEVELS),
    timestamp("tpep_pickup_datetime"),
    timestamp("tpep_dropoff_datetime"),
    numeric("passenger_count"),
    numeric("trip_distance"),
    numeric("pickup_longitude"),
    numeric("pickup_latitude"),
    numeric("dropoff_longitude"),
    numeric("dropoff_latitude"),
    categorical("payment_type", PAYMENT_TYPE_LEVELS),
    numeric("fare_amount"),
    numeric("tip_amount"),
    numeric("total_amount"),
))

COORDINATE_COLUMNS = ("pickup_longitude", "pickup_latitude", "dropoff_longitude", "dropoff_latitude")


def haversine_miles(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle distance between two points in miles."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(a)))


def trip_minutes(row: Row, context=None) -> Optional[float]:
    pickup: Optional[datetime] = row.get("tpep_pickup_datetime")
    dropoff: Optional[datetime] = row.get("tpep_dropoff_datetime")
    if pickup is None or dropoff is None:
        return None
    return round((dropoff - pickup).total_seconds() / 60, 4)


def straight_line_miles(row: Row, context=None) -> Optional[float]:
    coords = [row.get(c) for c in COORDINATE_COLUMNS]
    if any(c is None for c in coords):
        return None
    return round(haversine_miles(*coords), 4)


def pickup_date(row: Row, context=None) -> Optional[str]:
    pickup = row.get("tpep_pickup_datetime")
    return pickup.date().isoformat() if pickup is not None else None


def pickup_hour(row: Row, context=None) -> Optional[int]:
    pickup = row.get("tpep_pickup_datetime")
    return pickup.hour if pickup is not None else None


def pickup_weekday(row: Row, context=None) -> Optional[str]:
    pickup = row.get("tpep_pickup_datetime")
    return WEEKDAY_LEVELS[pickup.weekday()] if pickup is not None else None


def tip_percent(row: Row, context=None) -> Optional[float]:
    fare = row.get("fare_amount")
    tip = row.get("tip_amount")
    if fare is None or tip is None or fare <= 0:
        return None
    return round(tip / fare * 100, 2)


def payment_method(row: Row, context=None) -> Optional[str]:
    code = row.get("payment_type")
    return PAYMENT_METHODS.get(code) if code is not None else None


def average_mph(row: Row, context=None) -> Optional[float]:
    minutes = trip_minutes(row)
    distance = row.get("trip_distance")
    if minutes is None or distance is None or minutes <= 0:
        return None
    return round(distance / (minutes / 60), 3)


class TripCleaner:
    """
    Bundles the cleaning rules for taxi trips, parameterized by configuration.
    Rules are pure: they never modify rows or keep per-row state.
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize the trip cleaner.

        Args:
            config (Config): Provides fare limits, trip length limit and NYC bounds
        """
        self.config = config or Config()
        self.min_lon, self.min_lat, self.max_lon, self.max_lat = self.config.NYC_BOUNDS
        logger.info(f"TripCleaner initialized: fare ({self.config.MIN_FARE}, {self.config.MAX_FARE}], "
                    f"max {self.config.MAX_TRIP_MINUTES} min, bounds {self.config.NYC_BOUNDS}")

    def _in_bounds(self, lon: Any, lat: Any) -> bool:
        return (lon is not None and lat is not None
                and self.min_lon <= lon <= self.max_lon
                and self.min_lat <= lat <= self.max_lat)

    def is_valid_trip(self, row: Row) -> bool:
        """
        Row-selection rule for plausible trips. Rows with nulls in the checked
        columns are rejected, never raised on.
        """
        fare = row.get("fare_amount")
        if fare is None or not (self.config.MIN_FARE < fare <= self.config.MAX_FARE):
            return False
        if not self._in_bounds(row.get("pickup_longitude"), row.get("pickup_latitude")):
            return False
        if not self._in_bounds(row.get("dropoff_longitude"), row.get("dropoff_latitude")):
            return False
        minutes = trip_minutes(row)
        return minutes is not None and 0 <= minutes <= self.config.MAX_TRIP_MINUTES

    def selection(self) -> RowPredicate:
        return self.is_valid_trip

    def null_policy(self) -> Transform:
        """
        Fill nulls that should not cost a trip its row: unknown payment type and
        missing passenger count / tip.
        """
        return FillNulls({
            "payment_type": "5",
            "passenger_count": 0,
            "tip_amount": 0,
        })

    def enrichment(self) -> Transform:
        """Derived analysis columns; safe to re-run on already enriched data."""
        return compose(
            AddColumn(numeric("trip_minutes"), trip_minutes),
            AddColumn(numeric("straight_line_miles"), straight_line_miles),
            AddColumn(numeric("average_mph"), average_mph),
            AddColumn(text("pickup_date"), pickup_date),
            AddColumn(numeric("pickup_hour"), pickup_hour),
            AddColumn(categorical("pickup_weekday", WEEKDAY_LEVELS), pickup_weekday),
            AddColumn(categorical("payment_method", PAYMENT_METHOD_LEVELS), payment_method),
            AddColumn(numeric("tip_percent"), tip_percent),
        )

    def cleaning_transform(self) -> Transform:
        return compose(self.null_policy(), self.enrichment())

    @staticmethod
    def get_statistics(rows_read: int, rows_selected: int) -> Dict[str, Any]:
        """Get cleaning statistics for a finished run."""
        return {
            'records_processed': rows_read,
            'records_dropped': rows_read - rows_selected,
            'records_cleaned': rows_selected,
            'success_rate': rows_selected / rows_read * 100 if rows_read > 0 else 0
        }
