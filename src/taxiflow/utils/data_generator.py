# ========================
# src/taxiflow/utils/data_generator.py
# ========================

"""
Data Generation Utilities

Synthetic yellow-taxi trip records with realistic patterns and controlled
injection of implausible (but well-typed) rows.
"""

import csv
import math
import random
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

HEADER = [
    "VendorID", "tpep_pickup_datetime", "tpep_dropoff_datetime", "passenger_count",
    "trip_distance", "pickup_longitude", "pickup_latitude", "dropoff_longitude",
    "dropoff_latitude", "payment_type", "fare_amount", "tip_amount", "total_amount",
]


class TaxiTripGenerator:
    """
    Generator for realistic taxi trip test datasets.
    """

    # Pickup hotspots: (longitude, latitude, weight)
    HOTSPOTS = [
        (-73.9857, 40.7484, 0.30),  # Midtown
        (-74.0060, 40.7128, 0.20),  # Lower Manhattan
        (-73.9680, 40.7850, 0.15),  # Upper West Side
        (-73.7781, 40.6413, 0.10),  # JFK
        (-73.8740, 40.7769, 0.10),  # LaGuardia
        (-73.9442, 40.6782, 0.15),  # Brooklyn
    ]

    # Hour of day -> demand multiplier
    HOURLY_DEMAND = [
        0.6, 0.4, 0.3, 0.2, 0.2, 0.3, 0.6, 0.9, 1.1, 1.0, 0.9, 0.9,
        1.0, 1.0, 1.0, 1.0, 1.1, 1.2, 1.4, 1.4, 1.3, 1.2, 1.0, 0.8,
    ]

    ERROR_TYPES = ["zero_fare", "negative_fare", "zero_coordinates", "reversed_times", "missing_values"]

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize trip generator.

        Args:
            seed (int): Random seed for reproducible data generation
        """
        self.random = random.Random(seed)
        logger.info(f"TaxiTripGenerator initialized with seed: {seed}")

    def generate_dataset(self,
                         file_path: str,
                         num_rows: int,
                         error_rate: float = 0.05,
                         start_date: Optional[datetime] = None,
                         days: int = 31,
                         batch_size: int = 10000) -> Dict[str, Any]:
        """
        Generate a trip dataset with controlled error injection.

        Args:
            file_path (str): Output CSV file path
            num_rows (int): Number of rows to generate
            error_rate (float): Fraction of rows with implausible values
            start_date (datetime): First pickup day (default 2016-01-01)
            days (int): Number of days pickups are spread over
            batch_size (int): Rows buffered before each write

        Returns:
            dict: Generation statistics
        """
        logger.info(f"Generating {num_rows:,} trips with {error_rate:.1%} error rate...")
        start_date = start_date or datetime(2016, 1, 1)

        stats = {
            'total_rows': num_rows,
            'error_rate': error_rate,
            'start_date': start_date.isoformat(),
            'records_with_errors': 0,
            'error_types': {}
        }

        Path(file_path).parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(HEADER)

            batch: List[List[str]] = []
            for _ in range(num_rows):
                trip = self._generate_trip(start_date, days)
                if self.random.random() < error_rate:
                    error_type = self.random.choice(self.ERROR_TYPES)
                    self._inject_error(trip, error_type)
                    stats['records_with_errors'] += 1
                    stats['error_types'][error_type] = stats['error_types'].get(error_type, 0) + 1
                batch.append(self._format(trip))

                if len(batch) >= batch_size:
                    writer.writerows(batch)
                    batch = []

            if batch:
                writer.writerows(batch)

        logger.info(f"Generated {num_rows:,} trips at {file_path} "
                    f"({stats['records_with_errors']:,} with injected errors)")
        return stats

    def _generate_trip(self, start_date: datetime, days: int) -> Dict[str, Any]:
        pickup = self._pickup_time(start_date, days)
        lon, lat = self._pickup_location()

        distance = round(min(self.random.lognormvariate(0.6, 0.8), 40.0), 2)
        minutes = max(1.0, distance / self.random.uniform(8, 22) * 60)
        dropoff = pickup + timedelta(seconds=int(minutes * 60))
        bearing = self.random.uniform(0, 2 * math.pi)
        # straight-line is shorter than the driven distance
        offset = distance * 0.75 / 69.0
        dropoff_lon = lon + offset * math.cos(bearing) / math.cos(math.radians(lat))
        dropoff_lat = lat + offset * math.sin(bearing)

        fare = round(2.5 + distance * 2.5 + minutes * 0.5 * self.random.uniform(0.2, 0.6), 2)
        payment_type = self.random.choices(["1", "2", "3", "4"], weights=[0.65, 0.32, 0.02, 0.01])[0]
        tip = round(fare * self.random.choice([0.0, 0.15, 0.2, 0.25]), 2) if payment_type == "1" else 0.0

        return {
            "VendorID": self.random.choice(["1", "2"]),
            "tpep_pickup_datetime": pickup,
            "tpep_dropoff_datetime": dropoff,
            "passenger_count": self.random.choices([1, 2, 3, 4, 5, 6], weights=[70, 14, 5, 3, 5, 3])[0],
            "trip_distance": distance,
            "pickup_longitude": round(lon, 6),
            "pickup_latitude": round(lat, 6),
            "dropoff_longitude": round(dropoff_lon, 6),
            "dropoff_latitude": round(dropoff_lat, 6),
            "payment_type": payment_type,
            "fare_amount": fare,
            "tip_amount": tip,
            "total_amount": round(fare + tip + 0.8, 2),
        }

    def _pickup_time(self, start_date: datetime, days: int) -> datetime:
        day = self.random.randrange(days)
        hour = self.random.choices(range(24), weights=self.HOURLY_DEMAND)[0]
        return start_date + timedelta(days=day, hours=hour, seconds=self.random.randrange(3600))

    def _pickup_location(self):
        lon, lat, _ = self.random.choices(self.HOTSPOTS, weights=[h[2] for h in self.HOTSPOTS])[0]
        return lon + self.random.gauss(0, 0.01), lat + self.random.gauss(0, 0.01)

    def _inject_error(self, trip: Dict[str, Any], error_type: str) -> None:
        if error_type == "zero_fare":
            trip["fare_amount"] = 0
        elif error_type == "negative_fare":
            trip["fare_amount"] = -trip["fare_amount"]
        elif error_type == "zero_coordinates":
            trip["pickup_longitude"] = 0.0
            trip["pickup_latitude"] = 0.0
        elif error_type == "reversed_times":
            trip["tpep_pickup_datetime"], trip["tpep_dropoff_datetime"] = (
                trip["tpep_dropoff_datetime"], trip["tpep_pickup_datetime"]
            )
        elif error_type == "missing_values":
            for column in self.random.sample(["passenger_count", "payment_type", "tip_amount",
                                              "dropoff_longitude", "dropoff_latitude"], 2):
                trip[column] = None

    @staticmethod
    def _format(trip: Dict[str, Any]) -> List[str]:
        fields = []
        for column in HEADER:
            value = trip[column]
            if value is None:
                fields.append("")
            elif isinstance(value, datetime):
                fields.append(value.strftime(TIMESTAMP_FORMAT))
            else:
                fields.append(str(value))
        return fields
