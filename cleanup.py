#!/usr/bin/env python3
"""
===========================
= REDIS MIGRATION TOOLKIT =
===========================

Title: Complete Migration Cleanup
Version: v1.0.0
Date: OCT-18-2026

Description:
Runs both cleanup phases in order:
    Phase A - migration resources (bucket lifecycle, setup stacks)
    Phase B - validation resources (stacks, Lambda functions, IAM roles)

Each phase's outcome is tracked; a failed phase does not stop the next one and
nothing already deleted is restored. Exit code is 1 if any phase failed.

Usage:
    python cleanup.py [config] [--dry-run] [--force] [--skip-migration] [--skip-validation]
"""

import argparse
import datetime
import importlib.util
import sys
from typing import Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

import utils
from sslib.config import DEFAULT_CONFIG_FILE, MigrationConfig, load_config
from sslib.errors import MigrationToolkitError

SCRIPT_NAME = "cleanup-all-migration"


def load_phase_module(module_name: str):
    """Load a cleanup phase from scripts/ by file path."""
    path = utils.get_project_root() / "scripts" / f"{module_name}.py"
    spec = importlib.util.spec_from_file_location(module_name, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def show_overview(config: MigrationConfig, skip_migration: bool, skip_validation: bool) -> None:
    utils.log_info("Complete Migration Cleanup Overview:")
    if not skip_migration:
        utils.log_info("Phase A: Migration Resources")
        utils.log_info(f"  - Source stack: {config.source.migration_setup_stack_name}")
        utils.log_info(f"  - Target stack: {config.target.migration_setup_stack_name}")
        utils.log_info(f"  - S3 buckets ({config.cleanup.lifecycle_expiration_days}-day lifecycle policy)")
    if not skip_validation:
        utils.log_info("Phase B: Validation Resources")
        utils.log_info("  - Validation stacks, Lambda functions and IAM roles (target account)")
    utils.log_info("PRESERVED:")
    utils.log_info("  - All Redis clusters and data")
    utils.log_info("  - Source and target infrastructure stacks")


def confirm_cleanup(dry_run: bool) -> bool:
    """Two confirmations: intent, then the final go-ahead."""
    if dry_run:
        utils.log_info("This is a DRY RUN - no resources will actually be deleted")
    if not utils.prompt_for_confirmation("Do you want to proceed with the complete cleanup?"):
        return False
    return utils.prompt_for_confirmation("Are you absolutely sure? Type 'yes' to confirm")


def run_all(
    config: MigrationConfig,
    dry_run: bool = False,
    skip_migration: bool = False,
    skip_validation: bool = False,
    phases: Optional[Dict[str, object]] = None,
) -> Dict[str, bool]:
    """
    Run the selected phases and return {phase name: succeeded}.

    A phase that raises is recorded as failed and the next phase still runs.
    """
    phases = phases or {}
    results: Dict[str, bool] = {}

    if not skip_migration:
        utils.log_phase("PHASE A: Migration Resources Cleanup")
        phase_a = phases.get("migration") or load_phase_module("cleanup_migration_resources")
        results["migration"] = _run_phase("Migration resources cleanup",
                                          lambda: phase_a.run_cleanup(config, dry_run=dry_run))

    if not skip_validation:
        utils.log_phase("PHASE B: Validation Resources Cleanup")
        phase_b = phases.get("validation") or load_phase_module("cleanup_validation_resources")
        results["validation"] = _run_phase("Validation resources cleanup",
                                           lambda: phase_b.run_cleanup(config, dry_run=dry_run))

    return results


def _run_phase(label: str, run) -> bool:
    try:
        ok = bool(run())
    except (MigrationToolkitError, ClientError, BotoCoreError) as e:
        utils.log_error(utils.describe_aws_error(label, e))
        return False
    if ok:
        utils.log_success(f"{label} completed")
    else:
        utils.log_error(f"{label} failed")
    return ok


def show_final_summary(results: Dict[str, bool], dry_run: bool) -> None:
    utils.log_section("Cleanup Summary")
    for phase, ok in results.items():
        (utils.log_success if ok else utils.log_error)(
            f"{phase.capitalize()} resources: {'completed' if ok else 'FAILED'}"
        )
    if dry_run:
        utils.log_info("DRY RUN completed - no resources were actually deleted")
    elif results and all(results.values()):
        utils.log_success("Complete migration cleanup finished!")
        utils.log_info("Your Redis clusters continue to run normally")
    else:
        utils.log_warning("Some cleanup phases failed; re-run the individual cleanup scripts to retry")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Clean up all migration and validation resources, preserving Redis clusters"
    )
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE,
                        help=f"Migration configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be deleted without actually deleting")
    parser.add_argument("--force", action="store_true", help="Skip confirmation prompts")
    parser.add_argument("--skip-migration", action="store_true", help="Skip migration resources cleanup")
    parser.add_argument("--skip-validation", action="store_true", help="Skip validation resources cleanup")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    utils.setup_logging(SCRIPT_NAME)
    start_time = datetime.datetime.now()
    utils.log_script_start(SCRIPT_NAME, "Complete ElastiCache migration cleanup")

    try:
        if args.skip_migration and args.skip_validation:
            utils.log_warning("Both phases skipped; nothing to do")
            return 0

        utils.check_prerequisites(args.config)
        config = load_config(args.config, scope="cleanup")

        show_overview(config, args.skip_migration, args.skip_validation)
        if args.force or utils.is_auto_run():
            utils.log_info("Force mode enabled, skipping confirmation")
        elif not confirm_cleanup(args.dry_run):
            utils.log_info("Cleanup cancelled by user")
            return 1

        results = run_all(config, args.dry_run, args.skip_migration, args.skip_validation)
        show_final_summary(results, args.dry_run)
        return 0 if all(results.values()) else 1

    except MigrationToolkitError as e:
        utils.log_error("Cleanup failed", e)
    except (ClientError, NoCredentialsError, BotoCoreError) as e:
        utils.log_error(utils.describe_aws_error("Cleanup failed", e))
    except KeyboardInterrupt:
        utils.log_warning("Cleanup interrupted by user")
    finally:
        utils.log_script_end(SCRIPT_NAME, start_time)
    return 1


if __name__ == "__main__":
    sys.exit(main())
