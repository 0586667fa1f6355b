#!/usr/bin/env python3
"""
Ingest a playable region from Overture Maps into Snowflake.

Downloads the Overture extracts for the region bbox, then runs the phased
ingest: hex coverage, roads, buildings, pruning, land ratio, rust seed, hub
assignment and road graph. Safe to re-run; every phase is idempotent.

Usage:
    python ingest_region.py --region boston_ma_usa
    python ingest_region.py --region my_town --bbox "44.35,-68.30,44.42,-68.20" --name "My Town"
    python ingest_region.py --region boston_ma_usa --dry-run --output coverage.csv
"""

import sys
import argparse
from pathlib import Path
from typing import Dict, Any

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from roadgrid.common import (
    config,
    get_logger,
    setup_logging,
    TimedLogger,
    resolve_region,
    execute_sql_file,
)
from roadgrid.h3 import HexCoverageGenerator, RegionBounds
from roadgrid.load import SCHEMA_PATH
from roadgrid.pipeline import IngestPhaseError, RegionIngestPipeline

logger = get_logger("ingest_region")


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Ingest an Overture region into the roadgrid world tables",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--region",
        type=str,
        default=config.region.region_id,
        help="Region id (predefined, or any id together with --bbox)",
    )

    parser.add_argument(
        "--bbox",
        type=str,
        help='Bounding box as "min_lat,min_lng,max_lat,max_lng" (overrides predefined)',
    )

    parser.add_argument("--name", type=str, help="Region display name")

    parser.add_argument(
        "--resolution",
        type=int,
        default=config.hex.resolution,
        help="H3 resolution level (0-15)",
    )

    parser.add_argument("--data-dir", type=str, help="Overture extract directory")

    parser.add_argument(
        "--clean", action="store_true", help="Re-download Overture extracts"
    )

    parser.add_argument(
        "--regenerate-boundary",
        action="store_true",
        help="Replace the stored region boundary instead of unioning with it",
    )

    parser.add_argument(
        "--skip-download",
        action="store_true",
        help="Use existing extracts without calling the overturemaps CLI",
    )

    parser.add_argument(
        "--init-schema", action="store_true", help="Create tables before ingesting"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate hex coverage only; do not touch Snowflake",
    )

    parser.add_argument("--output", type=str, help="Save hex coverage to CSV file")

    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    return parser.parse_args()


def validate_inputs(args) -> Dict[str, Any]:
    """Resolve the region and validate the resolution."""
    region = resolve_region(args.region, bbox=args.bbox, name=args.name)
    bbox = region["bbox"]
    if len(bbox) != 4:
        raise ValueError("Bounding box must have 4 values")
    if bbox[0] >= bbox[2] or bbox[1] >= bbox[3]:
        raise ValueError("Invalid bounding box: min values must be less than max values")

    if not (0 <= args.resolution <= 15):
        raise ValueError(f"H3 resolution must be between 0 and 15, got {args.resolution}")

    return {**region, "resolution": args.resolution}


def write_coverage(region: Dict[str, Any], output_file: str = None) -> int:
    """Generate coverage for a dry run, optionally saving it to CSV."""
    bounds = RegionBounds.from_bbox(region["bbox"])
    generator = HexCoverageGenerator(region["resolution"])
    coverage = generator.generate_coverage(bounds)
    df = generator.to_dataframe(coverage, region["region_id"], coverage.centroid)

    if output_file:
        with TimedLogger(logger, f"save_coverage_to_csv: {output_file}"):
            output_path = Path(output_file)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(output_path, index=False)
            logger.info(f"Coverage saved to {output_path}")

    return len(df)


def main():
    """Main execution function."""

    try:
        args = parse_arguments()

        if args.verbose:
            setup_logging(level="DEBUG")

        region = validate_inputs(args)
        logger.info(f"Starting ingest for {region['region_id']}")

        if args.dry_run:
            count = write_coverage(region, args.output)
            print(f"\nDRY RUN: {count} hexes cover {region['region_name']}")
            return

        if args.init_schema:
            execute_sql_file(str(SCHEMA_PATH))

        pipeline = RegionIngestPipeline(
            region_id=region["region_id"],
            region_name=region["region_name"],
            bbox=region["bbox"],
            resolution=region["resolution"],
            data_dir=Path(args.data_dir) if args.data_dir else None,
        )
        run = pipeline.run(
            clean=args.clean,
            regenerate_boundary=args.regenerate_boundary,
            download=not args.skip_download,
        )

        if args.output:
            write_coverage(region, args.output)

        print(f"\nSUCCESS: Ingested {region['region_name']} (run {run.run_id})")
        for phase, count in run.phase_counts.items():
            print(f"   {phase}: {count:,}")

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(1)
    except IngestPhaseError as e:
        logger.error(f"Ingest failed in phase {e.phase}: {e.cause}")
        print(f"\nFAILED in phase '{e.phase}': {e.cause}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Ingest failed: {e}")
        print(f"\nERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
