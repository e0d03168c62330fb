#!/usr/bin/env python3
# ========================
# scripts/run_large_scale_test.py
# ========================

"""
Script to test the pipeline with a large trip file (millions of rows).
Memory stays bounded by chunk size and worker count, not by file size.

Usage:
    python scripts/run_large_scale_test.py [num_rows] [max_workers]
"""

import sys
import os

# Add src to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from taxiflow.pipeline import run_trip_analysis
from taxiflow.utils import Config, TaxiTripGenerator, setup_logging


def main():
    """Run a large-scale test of the trip pipeline."""
    try:
        num_rows = int(sys.argv[1]) if len(sys.argv) > 1 else 1_000_000
        max_workers = int(sys.argv[2]) if len(sys.argv) > 2 else os.cpu_count() or 1
    except ValueError:
        print("Usage: python run_large_scale_test.py [num_rows] [max_workers]")
        print("Example: python run_large_scale_test.py 1000000 4")
        sys.exit(1)

    chunk_size = max(10000, num_rows // 100)
    config = Config({'max_workers': max_workers, 'default_chunk_size': chunk_size})
    setup_logging(log_level=config.LOG_LEVEL)

    input_file = f'data/raw/large_taxi_trips_{num_rows}.csv'
    output_dir = 'data/processed/large_scale'

    print("=" * 60)
    print("LARGE SCALE TAXI PIPELINE TEST")
    print("=" * 60)
    print(f"Target dataset size: {num_rows:,} rows")
    print(f"Chunk size: {chunk_size:,} rows")
    print(f"Transform workers: {max_workers}")
    print(f"Input file: {input_file}")
    print(f"Output directory: {output_dir}")
    print("=" * 60)

    # Step 1: Generate the trip file once
    if os.path.exists(input_file):
        print(f"\n🔄 Step 1: Reusing existing file {input_file}")
    else:
        print(f"\n🔄 Step 1: Generating {num_rows:,} trips...")
        TaxiTripGenerator(seed=42).generate_dataset(input_file, num_rows, error_rate=config.SAMPLE_ERROR_RATE)

    # Step 2: Run the passes
    print("\n🔄 Step 2: Running trip analysis...")
    results = run_trip_analysis(input_file, output_dir, config=config)

    # Step 3: Verify outputs
    print("\n🔄 Step 3: Verifying outputs...")
    missing_files = []
    for name, filepath in results['saved_files'].items():
        if os.path.exists(filepath):
            print(f"✅ {name}: {os.path.getsize(filepath):,} bytes")
        else:
            missing_files.append(name)
            print(f"❌ {name}: MISSING")

    for pass_name, perf in results['performance'].items():
        print(f"   {pass_name}: {perf['rows_read']:,} rows in {perf['elapsed_seconds']:.1f}s "
              f"({perf['throughput_rows_per_second']:,.0f} rows/s, peak {perf['peak_memory_mb']:.0f} MB)")

    if missing_files:
        print(f"\n⚠️  Warning: {len(missing_files)} output files are missing!")
        sys.exit(1)
    print("\n✅ All output files generated successfully!")


if __name__ == '__main__':
    main()
