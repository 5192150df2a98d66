#!/usr/bin/env python3
"""
Validation Resources Cleanup (Phase B)

Removes the validation scaffolding from the target account:
- CloudFormation stacks (CREATE_COMPLETE / UPDATE_COMPLETE)
- Lambda functions
- IAM roles (managed policies detached, inline policies and instance profile links removed first)

A resource belongs to validation when it carries the tag
redis-migration:component=validation. Resources deployed from the legacy
templates are untagged; with cleanup.name_pattern_fallback enabled they are
matched by name instead (validator, validation, redis-test, migration-test).

Usage:
    python scripts/cleanup_validation_resources.py [config] [--dry-run] [--force]
"""

import argparse
import datetime
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Standard utils import pattern
try:
    import utils
except ImportError:
    script_dir = Path(__file__).parent.absolute()
    if script_dir.name.lower() == 'scripts':
        sys.path.append(str(script_dir.parent))
    else:
        sys.path.append(str(script_dir))
    import utils

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from sslib.aws_client import AwsAccount
from sslib.config import DEFAULT_CONFIG_FILE, MigrationConfig, load_config
from sslib.errors import MigrationToolkitError
from sslib.tagging import is_validation_resource, tag_list_to_dict
from sslib.teardown import delete_function, delete_role, delete_stack, find_functions, find_roles

SCRIPT_NAME = "cleanup-validation-resources"

ACTIVE_STACK_STATUSES = ("CREATE_COMPLETE", "UPDATE_COMPLETE")


# =============================================================================
# DISCOVERY
# =============================================================================


def find_validation_stacks(cfn, name_fallback: bool = True) -> List[str]:
    """Names of active stacks that belong to validation."""
    matches = []
    for page in cfn.get_paginator("describe_stacks").paginate():
        for stack in page.get("Stacks", []):
            if stack.get("StackStatus") not in ACTIVE_STACK_STATUSES:
                continue
            name = stack["StackName"]
            if is_validation_resource(name, tag_list_to_dict(stack.get("Tags")), name_fallback):
                matches.append(name)
    return matches


def _validation_matcher(name_fallback: bool):
    return lambda name, tags: is_validation_resource(name, tags, name_fallback)


def find_validation_functions(lambda_client, name_fallback: bool = True) -> List[str]:
    return find_functions(lambda_client, _validation_matcher(name_fallback))


def find_validation_roles(iam, name_fallback: bool = True) -> List[str]:
    """Customer-managed roles that belong to validation; service-linked roles are never considered."""
    return find_roles(iam, _validation_matcher(name_fallback))



# =============================================================================
# PHASE
# =============================================================================


def run_cleanup(
    config: MigrationConfig,
    dry_run: bool = False,
    target: Optional[AwsAccount] = None,
) -> bool:
    """
    Run Phase B in the target account. Confirmation is the caller's job.

    Stacks go first because deleting a stack removes the functions and roles
    it owns; functions and roles are discovered after that.

    Returns:
        bool: True (per-resource failures are logged as warnings)
    """
    target = target or AwsAccount("target", config.target.profile, config.target.region, config.aws_sdk_config)
    name_fallback = config.cleanup.name_pattern_fallback
    plan: List[Dict[str, Any]] = []

    if not name_fallback:
        utils.log_info("Name-pattern fallback disabled; only tagged resources will be matched")

    utils.log_section("Validation CloudFormation stacks")
    cfn = target.client("cloudformation")
    stacks = find_validation_stacks(cfn, name_fallback)
    if not stacks:
        utils.log_info("No validation stacks found")
    for stack_name in stacks:
        utils.log_action(f"Found validation stack: {stack_name}")
        if dry_run:
            utils.plan_action(plan, target.label, "Delete", "CloudFormation stack", stack_name)
        else:
            delete_stack(cfn, stack_name)

    utils.log_section("Validation Lambda functions")
    lambda_client = target.client("lambda")
    functions = find_validation_functions(lambda_client, name_fallback)
    if not functions:
        utils.log_info("No validation Lambda functions found")
    for function_name in functions:
        utils.log_action(f"Found validation function: {function_name}")
        if dry_run:
            utils.plan_action(plan, target.label, "Delete", "Lambda function", function_name)
        else:
            delete_function(lambda_client, function_name)

    utils.log_section("Validation IAM roles")
    iam = target.client("iam")
    roles = find_validation_roles(iam, name_fallback)
    if not roles:
        utils.log_info("No validation IAM roles found")
    for role_name in roles:
        utils.log_action(f"Found validation role: {role_name}")
        if dry_run:
            utils.plan_action(plan, target.label, "Delete", "IAM role", role_name,
                              "Managed policies detached and inline policies deleted first")
        else:
            delete_role(iam, role_name)

    if dry_run:
        utils.export_action_plan(plan, SCRIPT_NAME)
        utils.log_info(f"[DRY RUN] {len(plan)} action(s) planned, nothing was changed")
    else:
        utils.log_success("Validation resources cleanup completed!")
    return True


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clean up migration validation resources in the target account")
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE,
                        help=f"Migration configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be deleted without actually deleting")
    parser.add_argument("--force", action="store_true", help="Skip confirmation prompts")
    # Validation resources only ever exist in the target account
    parser.add_argument("--target-only", action="store_true", help="Accepted for symmetry; always target-only")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    utils.setup_logging(SCRIPT_NAME)
    start_time = datetime.datetime.now()
    utils.log_script_start(SCRIPT_NAME, "ElastiCache migration validation resources cleanup")

    try:
        utils.check_prerequisites(args.config)
        config = load_config(args.config, scope="cleanup")

        if args.force or utils.is_auto_run():
            utils.log_info("Force mode enabled, skipping confirmation")
        else:
            utils.log_warning("This will delete validation stacks, Lambda functions and IAM roles "
                              f"in the target account ({config.target.region})!")
            if args.dry_run:
                utils.log_info("This is a DRY RUN - no resources will actually be deleted")
            if not utils.prompt_for_confirmation("Do you want to proceed with the cleanup?"):
                utils.log_info("Cleanup cancelled by user")
                return 1

        return 0 if run_cleanup(config, args.dry_run) else 1

    except MigrationToolkitError as e:
        utils.log_error("Validation cleanup failed", e)
    except (ClientError, NoCredentialsError, BotoCoreError) as e:
        utils.log_error(utils.describe_aws_error("Validation cleanup failed", e))
    except KeyboardInterrupt:
        utils.log_warning("Cleanup interrupted by user")
    finally:
        utils.log_script_end(SCRIPT_NAME, start_time)
    return 1


if __name__ == "__main__":
    sys.exit(main())
