# ========================
# tests/test_cleaning.py
# ========================

import unittest
import tempfile
import os
import sys
import json
from datetime import datetime
from pathlib import Path

# Add src to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from taxiflow.pipeline.analysis import run_trip_analysis
from taxiflow.pipeline.cleaning import (
    TAXI_TRIP_SCHEMA, TripCleaner, average_mph, haversine_miles, payment_method, pickup_weekday,
    tip_percent, trip_minutes,
)
from taxiflow.pipeline.transforms import TransformContext
from taxiflow.utils.config import Config
from taxiflow.utils.data_generator import TaxiTripGenerator


def _trip(**overrides):
    trip = {
        "VendorID": "1",
        "tpep_pickup_datetime": datetime(2016, 1, 1, 8, 0),
        "tpep_dropoff_datetime": datetime(2016, 1, 1, 8, 30),
        "passenger_count": 1,
        "trip_distance": 5.0,
        "pickup_longitude": -73.9857,
        "pickup_latitude": 40.7484,
        "dropoff_longitude": -73.9442,
        "dropoff_latitude": 40.6782,
        "payment_type": "1",
        "fare_amount": 20.0,
        "tip_amount": 4.0,
        "total_amount": 24.8,
    }
    trip.update(overrides)
    return trip


class TestDerivedColumns(unittest.TestCase):

    def test_haversine(self):
        # one degree of latitude
        self.assertAlmostEqual(haversine_miles(0.0, 0.0, 0.0, 1.0), 69.093, places=2)
        self.assertEqual(haversine_miles(-73.9, 40.7, -73.9, 40.7), 0.0)

    def test_trip_fields(self):
        trip = _trip()
        self.assertEqual(trip_minutes(trip), 30.0)
        self.assertEqual(average_mph(trip), 10.0)
        self.assertEqual(tip_percent(trip), 20.0)
        self.assertEqual(payment_method(trip), "Credit card")
        self.assertEqual(pickup_weekday(trip), "Fri")

    def test_null_safe(self):
        trip = _trip(tpep_dropoff_datetime=None, fare_amount=0, payment_type=None)
        self.assertIsNone(trip_minutes(trip))
        self.assertIsNone(average_mph(trip))
        self.assertIsNone(tip_percent(trip))
        self.assertIsNone(payment_method(trip))


class TestTripCleaner(unittest.TestCase):

    def setUp(self):
        self.cleaner = TripCleaner(Config())

    def test_valid_trip(self):
        self.assertTrue(self.cleaner.is_valid_trip(_trip()))

    def test_invalid_trips(self):
        self.assertFalse(self.cleaner.is_valid_trip(_trip(fare_amount=0)))
        self.assertFalse(self.cleaner.is_valid_trip(_trip(fare_amount=-12.5)))
        self.assertFalse(self.cleaner.is_valid_trip(_trip(fare_amount=None)))
        self.assertFalse(self.cleaner.is_valid_trip(_trip(pickup_longitude=0.0, pickup_latitude=0.0)))
        self.assertFalse(self.cleaner.is_valid_trip(_trip(dropoff_latitude=None)))
        self.assertFalse(self.cleaner.is_valid_trip(_trip(tpep_dropoff_datetime=datetime(2016, 1, 1, 7, 0))))

    def test_limits_come_from_config(self):
        cleaner = TripCleaner(Config({'max_fare': 15, 'max_trip_minutes': 10}))
        self.assertFalse(cleaner.is_valid_trip(_trip(fare_amount=20.0)))
        self.assertFalse(cleaner.is_valid_trip(_trip(fare_amount=10.0)))

    def test_cleaning_transform(self):
        transform = self.cleaner.cleaning_transform()
        schema = transform.output_schema(TAXI_TRIP_SCHEMA)
        rows = [_trip(payment_type=None, tip_amount=None)]

        result = transform.apply(rows, TransformContext())

        self.assertEqual(schema.names[:13], TAXI_TRIP_SCHEMA.names)
        self.assertIn("trip_minutes", schema)
        self.assertEqual(result[0]["payment_method"], "Unknown")
        self.assertEqual(result[0]["tip_amount"], 0)
        self.assertEqual(result[0]["pickup_date"], "2016-01-01")
        self.assertEqual(result[0]["pickup_hour"], 8)
        # every derived value conforms to the declared schema
        schema.format_row(result[0])

    def test_get_statistics(self):
        stats = TripCleaner.get_statistics(200, 150)
        self.assertEqual(stats['records_dropped'], 50)
        self.assertEqual(stats['success_rate'], 75.0)
        self.assertEqual(TripCleaner.get_statistics(0, 0)['success_rate'], 0)


class TestTripAnalysis(unittest.TestCase):
    """Full import, clean and summary passes over generated trips."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.root = Path(self.temp_dir.name)
        self.input_file = str(self.root / "raw" / "trips.csv")
        self.generation = TaxiTripGenerator(seed=3).generate_dataset(self.input_file, 400, error_rate=0.2)

    def test_generator_is_reproducible(self):
        again = str(self.root / "again.csv")
        TaxiTripGenerator(seed=3).generate_dataset(again, 400, error_rate=0.2)
        self.assertEqual(Path(again).read_bytes(), Path(self.input_file).read_bytes())
        self.assertEqual(self.generation['total_rows'], 400)
        self.assertGreater(self.generation['records_with_errors'], 0)

    def test_run_trip_analysis(self):
        results = run_trip_analysis(self.input_file, str(self.root / "out"), config=Config(), chunk_size=64)

        self.assertEqual(results['pipeline_status'], 'completed')
        self.assertEqual(results['processing_stats']['rows_imported'], 400)
        quality = results['data_quality_stats']
        self.assertEqual(quality['records_cleaned'] + quality['records_dropped'], 400)
        self.assertLess(quality['records_cleaned'], 400)
        self.assertGreater(quality['records_cleaned'], 200)

        saved = results['saved_files']
        for name in ('trips', 'clean_trips', 'numeric_summary', 'category_summary',
                     'payment_method_by_pickup_weekday', 'daily_fares', 'summary'):
            self.assertTrue(os.path.exists(saved[name]), name)

        with open(saved['summary']) as f:
            summary = json.load(f)
        self.assertEqual(summary['fare_amount']['count'], quality['records_cleaned'])
        self.assertGreater(summary['fare_amount']['min'], 0)
        self.assertEqual(sum(g['count'] for g in summary['daily_fares']['groups'].values()),
                         quality['records_cleaned'])
        self.assertEqual(summary['payment_method_by_pickup_weekday']['total'], quality['records_cleaned'])

    def test_parallel_and_chunking_give_same_results(self):
        first = run_trip_analysis(self.input_file, str(self.root / "a"),
                                  config=Config({'max_workers': 1}), chunk_size=400)
        second = run_trip_analysis(self.input_file, str(self.root / "b"),
                                   config=Config({'max_workers': 3}), chunk_size=17)

        for name in ('clean_trips', 'numeric_summary', 'daily_fares', 'summary'):
            self.assertEqual(Path(first['saved_files'][name]).read_bytes(),
                             Path(second['saved_files'][name]).read_bytes(), name)


if __name__ == '__main__':
    unittest.main()
