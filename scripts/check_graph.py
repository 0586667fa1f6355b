#!/usr/bin/env python3
"""
Sanity checks for a region's stored road graph.

Reports edge symmetry and connected components, and optionally whether two
connectors share a component (i.e. whether a route between them can exist).

Usage:
    python check_graph.py --region bar_harbor_me_usa_demo
    python check_graph.py --region boston_ma_usa --connector A --connector B
"""

import sys
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from roadgrid.common import config, get_logger, TimedLogger
from roadgrid.routing import connected_components, fetch_region_graph
from roadgrid.transform import Edge, find_asymmetric_edges

logger = get_logger("check_graph")


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Check symmetry and connectivity of a region road graph",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--region", type=str, default=config.region.region_id)
    parser.add_argument(
        "--connector",
        action="append",
        default=[],
        help="Connector id to locate (repeatable)",
    )
    parser.add_argument("--top", type=int, default=10, help="Components to list")
    return parser.parse_args()


def main():
    """Main execution function."""

    try:
        args = parse_arguments()

        with TimedLogger(logger, f"check_graph: {args.region}"):
            region_graph = fetch_region_graph(args.region)

        if region_graph is None:
            print(f"\nNo connectors stored for {args.region}")
            sys.exit(1)

        edges = [
            Edge(e.segment_id, from_id, e.to_connector, e.length_meters, "")
            for from_id, out in region_graph.graph.items()
            for e in out
        ]
        asymmetric = find_asymmetric_edges(edges)
        components = connected_components(region_graph.network, region_graph.coords)

        print(f"\nGraph for {args.region}:")
        print(f"   Connectors: {len(region_graph.coords):,}")
        print(f"   Edges: {region_graph.edge_count:,}")
        print(f"   Asymmetric edges: {len(asymmetric):,}")
        print(f"   Connected components: {len(components):,}")
        for i, component in enumerate(components[: args.top], 1):
            print(f"     {i}: {len(component):,} connectors (e.g. {component[0]})")

        if args.connector:
            index = {node: i for i, comp in enumerate(components, 1) for node in comp}
            for connector_id in args.connector:
                print(f"   {connector_id}: component {index.get(connector_id, 'not found')}")

        if asymmetric:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Graph check failed: {e}")
        print(f"\nERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
