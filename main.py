#!/usr/bin/env python3
# ========================
# main.py
# ========================

"""
Main Entry Point for the Taxi Trip Pipeline

Generates a synthetic yellow-taxi sample, then imports, cleans and summarizes
it out of core, leaving the datasets and reports in the output directory.

Usage:
    python main.py [num_rows]
"""

import sys
import logging
from pathlib import Path

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from taxiflow.pipeline import (
    Dataset, Schema, TAXI_TRIP_SCHEMA, estimate_processing_time, run_trip_analysis, validate_input,
)
from taxiflow.utils import Config, PipelineError, TaxiTripGenerator, setup_logging


def main(argv=None):
    """Main execution function."""
    argv = sys.argv[1:] if argv is None else argv

    # Initialize configuration
    config = Config()
    num_rows = int(argv[0]) if argv else config.DEFAULT_SAMPLE_ROWS

    # Setup logging
    setup_logging(
        log_level=config.LOG_LEVEL,
        log_file="pipeline.log",
        log_dir=config.LOG_DIR
    )

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info("TAXI TRIP PIPELINE - MAIN EXECUTION")
    logger.info("=" * 60)

    invalid = [name for name, ok in config.validate_config().items() if not ok]
    if invalid:
        logger.error(f"Invalid configuration values: {invalid}")
        return 1

    try:
        config.ensure_directories()
        schema = Schema.from_json_file(config.SCHEMA_FILE) if config.SCHEMA_FILE else TAXI_TRIP_SCHEMA

        # Step 1: Generate sample data
        input_file = config.DEFAULT_INPUT_FILE
        logger.info("Step 1: Generating sample trips...")

        generator = TaxiTripGenerator(seed=42)  # Reproducible data
        generation_stats = generator.generate_dataset(
            file_path=input_file,
            num_rows=num_rows,
            error_rate=config.SAMPLE_ERROR_RATE
        )

        # Step 2: Validate and estimate
        source = Dataset(Path(input_file), schema, delimiter=config.INPUT_DELIMITER)
        if not validate_input(source):
            logger.error("Input validation failed. Exiting.")
            return 1

        estimates = estimate_processing_time(source, config.DEFAULT_CHUNK_SIZE)
        if estimates:
            logger.info(f"Processing estimates: {estimates}")

        # Step 3: Run the passes
        logger.info("Step 3: Running trip analysis...")
        results = run_trip_analysis(
            input_file,
            config.DEFAULT_OUTPUT_DIR,
            config=config,
            schema=schema
        )

        # Step 4: Print summary
        _print_execution_summary(results, generation_stats)

        logger.info("Pipeline execution completed successfully!")
        return 0

    except PipelineError as e:
        logger.error(f"Pipeline execution failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Pipeline execution failed: {e}", exc_info=True)
        return 1


def _print_execution_summary(results: dict, generation_stats: dict) -> None:
    """Print final execution summary."""
    print("\n" + "=" * 70)
    print("PIPELINE EXECUTION SUMMARY")
    print("=" * 70)

    print("📊 Data Generation:")
    print(f"   • Trips generated: {generation_stats['total_rows']:,}")
    print(f"   • Error rate injected: {generation_stats['error_rate']:.1%}")
    print(f"   • Implausible trips: {generation_stats['records_with_errors']:,}")

    processing_stats = results['processing_stats']
    quality_stats = results['data_quality_stats']

    print("\n🔄 Data Processing:")
    print(f"   • Trips imported: {processing_stats['rows_imported']:,}")
    print(f"   • Trips kept: {quality_stats['records_cleaned']:,}")
    print(f"   • Trips dropped: {quality_stats['records_dropped']:,}")
    print(f"   • Data quality rate: {quality_stats['success_rate']:.1f}%")

    clean = results['performance'].get('clean', {})
    if clean:
        print(f"   • Throughput: {clean.get('throughput_rows_per_second', 0):,.0f} rows/s, "
              f"peak memory {clean.get('peak_memory_mb', 0):.1f} MB")

    print("\n📁 Generated Outputs:")
    for dataset_type, file_path in results['saved_files'].items():
        if dataset_type != 'summary':
            print(f"   • {dataset_type.replace('_', ' ').title()}: {Path(file_path).name}")

    print("\n🚀 Next Steps:")
    print("   1. Start API server: python api_server.py")
    print("   2. Run large scale test: python scripts/run_large_scale_test.py 1000000")
    print("   3. Check logs: logs/pipeline.log")

    print("=" * 70)


if __name__ == '__main__':
    exit_code = main()
    sys.exit(exit_code)
