"""Command-line interface for synchronizing one repository into another.

This module provides the ``imodel-transform`` command. It composes a hydra-zen
configuration from the ``transformer`` option group and the command-line
overrides, then runs a full or incremental synchronization between two SQLite
repositories and saves the target.

Usage:
    imodel-transform source_path=plant.db target_path=copy.db
    imodel-transform source_path=branch.db target_path=master.db transformer=reverse
    imodel-transform source_path=plant.db target_path=copy.db changes_since=42
    imodel-transform source_path=plant.db target_path=copy.db transformer=lenient report_path=report.json

See Also:
    - core.config: The ``transformer`` option group
    - transformer.Transformer: The engine this command drives
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from hydra_zen import builds, store, zen

from imodel_transformer.core.config import TransformerOptions
from imodel_transformer.core.constants import ROOT_SUBJECT_ID
from imodel_transformer.core.exceptions import TransformerException
from imodel_transformer.core.logging_config import apply_logger_overrides, configure_logging
from imodel_transformer.repository.sqlite import SqliteRepository
from imodel_transformer.transformer.report import TransformReport
from imodel_transformer.transformer.transformer import Transformer

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "imodel_transform"


def run_transform(
    source_path: str,
    target_path: str,
    transformer: TransformerOptions,
    changes_since: int | str | None = None,
    create_target: bool = False,
    report_path: str | None = None,
    log_level: str = "INFO",
    logger_overrides: dict[str, str] | None = None,
) -> TransformReport:
    """Synchronize the repository at ``source_path`` into the one at ``target_path``.

    The target is saved only when the synchronization succeeds; on failure its
    changes are abandoned and the error propagates.

    Args:
        source_path: Source repository database file.
        target_path: Target repository database file.
        transformer: Session options.
        changes_since: Process only source changes after this change counter value
            or ISO 8601 timestamp. Processes everything when omitted.
        create_target: Create an empty target when ``target_path`` does not exist.
        report_path: Write the issue report here as JSON.
        log_level: Level name for the ``imodel_transformer`` logger.
        logger_overrides: Levels for individual loggers, keyed by logger name.

    Returns:
        The report of the session.
    """
    configure_logging(level=log_level, library_level=logging.WARNING)
    if logger_overrides:
        apply_logger_overrides(logger_overrides)
    source = SqliteRepository.open(source_path)
    try:
        if create_target and not Path(target_path).exists():
            root_name = source.get_element(ROOT_SUBJECT_ID).code.value or "Root"
            target = SqliteRepository.create_empty(root_name, target_path)
        else:
            target = SqliteRepository.open(target_path)
    except TransformerException:
        source.close()
        raise

    try:
        with Transformer(source, target, transformer) as session:
            try:
                if changes_since is None:
                    session.process_all()
                else:
                    session.process_changes(changes_since)
            except TransformerException:
                target.abandon_changes()
                source.abandon_changes()
                raise
            counters = session.importer.counters
            target.save_changes(f"Synchronized from {source.repository_id} at {datetime.now().isoformat()}")
            if transformer.is_reverse_synchronization and not transformer.no_provenance:
                source.save_changes(f"Provenance for {target.repository_id}")
            report = session.report
    finally:
        source.close()
        target.close()

    logger.info(f"Changes written: {counters.to_dict()}")
    if report.has_issues:
        logger.warning(f"Synchronization finished with issues:\n{report.to_text()}")
    if report_path is not None:
        Path(report_path).write_text(report.to_json())
    return report


# =============================================================================
# Hydra Integration
# =============================================================================

RunTransformConf = builds(
    run_transform,
    populate_full_signature=True,
    hydra_defaults=["_self_", {"transformer": "default"}],
)
store(RunTransformConf, name=DEFAULT_CONFIG_NAME)


def main() -> int:
    """Main entry point for the ``imodel-transform`` command.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    # Hydra takes over argument parsing, so only peel off our own options
    parser = argparse.ArgumentParser(
        description="Synchronize one repository into another",
        epilog=(
            "Examples:\n"
            "  imodel-transform source_path=plant.db target_path=copy.db\n"
            "  imodel-transform source_path=branch.db target_path=master.db transformer=reverse\n"
            "  imodel-transform source_path=plant.db target_path=copy.db changes_since=42\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument(
        "--config-name",
        type=str,
        default=DEFAULT_CONFIG_NAME,
        help=f"Name of the hydra-zen config to use (default: {DEFAULT_CONFIG_NAME})",
    )
    parser.add_argument("--help", "-h", action="store_true", help="Show this help message and exit")
    args, remaining = parser.parse_known_args()

    if args.help and not remaining:
        parser.print_help()
        print("\nOption groups:")
        print("  transformer=default|reverse|lenient")
        print("\nNote: All other arguments are passed to Hydra as configuration overrides.")
        return 0

    store.add_to_hydra_store()

    original_argv = sys.argv
    sys.argv = [sys.argv[0]] + remaining
    try:
        zen(run_transform).hydra_main(
            config_name=args.config_name,
            version_base="1.3",
            config_path=None,
        )
    finally:
        sys.argv = original_argv
    return 0


if __name__ == "__main__":
    sys.exit(main())
