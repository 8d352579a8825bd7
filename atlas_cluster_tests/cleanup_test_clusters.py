#!/usr/bin/env python3
"""Delete test clusters left behind in the Atlas test project.

By default every isolated test cluster is deleted. Shared test clusters are kept unless
a pattern matching them is given explicitly.
"""

import argparse
import logging
import sys

from atlas_cluster_tests.cluster_management import manager
from atlas_cluster_tests.cluster_management import naming
from atlas_cluster_tests.utils import configuration
from atlas_cluster_tests.utils import helpers

LOGGER = logging.getLogger(__name__)


def get_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=(__doc__ or "").split("\n", maxsplit=1)[0])
    parser.add_argument(
        "-p",
        "--pattern",
        default=naming.ISOLATED_NAME_PATTERN.pattern,
        help="Regular expression the whole cluster name must match (default: isolated clusters).",
    )
    parser.add_argument(
        "-c",
        "--properties-file",
        type=helpers.check_file_arg,
        help="Path to Atlas client properties file.",
    )
    parser.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Only list the clusters that would be deleted.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(format="%(levelname)s:%(message)s", level=logging.INFO)
    args = get_args(argv)

    try:
        config = configuration.AtlasTestConfig.load(properties_file=args.properties_file)
        cluster_manager = manager.ClusterLifecycleManager.from_config(config)
    except configuration.ConfigurationError as exc:
        LOGGER.error(str(exc))  # noqa: TRY400
        return 1

    if args.dry_run:
        for cluster in cluster_manager.find_by_pattern(args.pattern):
            LOGGER.info(f"Would delete {cluster.kind.value} cluster '{cluster.name}'.")
        return 0

    result = cluster_manager.cleanup_by_pattern(args.pattern)
    LOGGER.info(f"Deleted {len(result.deleted)} clusters, skipped {len(result.skipped)}.")
    for err in result.failed.values():
        LOGGER.error(str(err))
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
