#!/usr/bin/env python3
"""
Migration Resources Cleanup (Phase A)

Removes the scaffolding created for the snapshot transfer while leaving every
Redis cluster untouched:
- Export bucket (source) and import bucket (target): a 30-day expiration
  lifecycle rule is applied instead of deleting objects immediately
- Migration setup stacks in both accounts: deleted, waiting for completion
- Test data loader (source): the Lambda function and IAM role tagged
  redis-migration:component=data-loader

Preserved:
- All Redis clusters and data
- VPC/networking and the source/target infrastructure stacks

Usage:
    python scripts/cleanup_migration_resources.py [config] [--dry-run] [--force]
        [--source-only | --target-only]
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

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, WaiterError

from sslib.aws_client import AwsAccount
from sslib.buckets import bucket_exists, conventional_bucket_name, put_expiration_lifecycle
from sslib.config import DEFAULT_CONFIG_FILE, MigrationConfig, load_config
from sslib.errors import MigrationToolkitError
from sslib.stacks import OUTPUT_EXPORT_BUCKET, OUTPUT_IMPORT_BUCKET, get_stack_output, stack_exists
from sslib.tagging import COMPONENT_DATA_LOADER, has_component_tag
from sslib.teardown import delete_function, delete_role, find_functions, find_roles

SCRIPT_NAME = "cleanup-migration-resources"

# Which bucket each side owns: (bucket kind, stack output holding its name)
_BUCKET_FOR_SIDE = {
    "source": ("export", OUTPUT_EXPORT_BUCKET),
    "target": ("import", OUTPUT_IMPORT_BUCKET),
}


@utils.aws_error_handler("Listing Redis clusters", default_return=[])
def list_redis_clusters(account: AwsAccount) -> List[Dict[str, Any]]:
    paginator = account.client("elasticache").get_paginator("describe_cache_clusters")
    return [
        cluster
        for page in paginator.paginate()
        for cluster in page.get("CacheClusters", [])
        if cluster.get("Engine") == "redis"
    ]


def verify_redis_health(accounts: List[AwsAccount]) -> None:
    """Warn about Redis clusters that are not 'available'. Never fails the run."""
    utils.log_info("Verifying Redis cluster health before cleanup...")
    for account in accounts:
        clusters = list_redis_clusters(account)
        if not clusters:
            utils.log_info(f"No Redis clusters found in {account.label} account")
        for cluster in clusters:
            status = cluster.get("CacheClusterStatus")
            if status != "available":
                utils.log_warning(
                    f"{account.label.capitalize()} Redis cluster {cluster['CacheClusterId']} "
                    f"is not available (status: {status})"
                )
    utils.log_success("Redis cluster health check completed")


def cleanup_bucket(
    account: AwsAccount,
    setup_stack: str,
    config: MigrationConfig,
    dry_run: bool,
    plan: List[Dict[str, Any]],
) -> None:
    """
    Apply the expiration lifecycle rule to the side's export/import bucket.

    The bucket name comes from the setup stack outputs; when the stack no
    longer reports it, the conventional template name is used.
    """
    kind, output_key = _BUCKET_FOR_SIDE[account.label]
    s3 = account.client("s3")

    bucket = get_stack_output(account.client("cloudformation"), setup_stack, output_key)
    if not bucket:
        bucket = conventional_bucket_name(kind, account.account_id, account.region)
        utils.log_debug(f"{output_key} not in stack outputs, using {bucket}")

    if not bucket_exists(s3, bucket):
        utils.log_info(f"{kind.capitalize()} bucket {bucket} not found or already deleted")
        return

    days = config.cleanup.lifecycle_expiration_days
    utils.log_action(f"Processing {kind} bucket: {bucket}")
    if dry_run:
        utils.plan_action(plan, account.label, "Set lifecycle on", "S3 bucket", bucket,
                          f"Expire objects after {days} days")
        return

    with utils.handle_aws_operation(f"Setting lifecycle policy on {bucket}", suppress_errors=True, as_warning=True):
        put_expiration_lifecycle(s3, bucket, days, config.cleanup.noncurrent_expiration_days)
        utils.log_info(f"{kind.capitalize()} bucket will be automatically cleaned up in {days} days "
                       "via lifecycle policy")


def delete_setup_stack(account: AwsAccount, stack_name: str, dry_run: bool, plan: List[Dict[str, Any]]) -> bool:
    """
    Delete a migration setup stack and wait for the deletion to finish.

    Returns:
        bool: False only when the delete was started but did not complete
    """
    cfn = account.client("cloudformation")
    utils.log_action(f"Cleaning up CloudFormation stack: {stack_name} ({account.label})")

    if not stack_exists(cfn, stack_name):
        utils.log_info(f"Stack {stack_name} not found or already deleted")
        return True

    if dry_run:
        utils.plan_action(plan, account.label, "Delete", "CloudFormation stack", stack_name)
        return True

    utils.log_aws_operation("delete_stack", "CloudFormation", account.region, stack_name)
    cfn.delete_stack(StackName=stack_name)
    utils.log_info(f"Stack deletion initiated: {stack_name}")
    utils.log_info("Waiting for stack deletion to complete...")
    try:
        cfn.get_waiter("stack_delete_complete").wait(StackName=stack_name)
    except WaiterError as e:
        utils.log_error(f"Stack deletion failed or timed out: {stack_name}", e)
        return False

    utils.log_success(f"Stack deleted: {stack_name}")
    return True


def is_data_loader_resource(name: str, tags: Dict[str, str]) -> bool:
    """Loader resources are matched by tag only; the name is not considered."""
    return has_component_tag(tags, COMPONENT_DATA_LOADER)


def cleanup_data_loader(account: AwsAccount, dry_run: bool, plan: List[Dict[str, Any]]) -> None:
    """Delete the test data loader function, then its execution role."""
    lambda_client = account.client("lambda")
    iam = account.client("iam")
    functions = find_functions(lambda_client, is_data_loader_resource)
    roles = find_roles(iam, is_data_loader_resource)
    if not functions and not roles:
        utils.log_info(f"No data loader resources found in {account.label} account")
        return

    for function_name in functions:
        utils.log_action(f"Found data loader function: {function_name}")
        if dry_run:
            utils.plan_action(plan, account.label, "Delete", "Lambda function", function_name)
        else:
            delete_function(lambda_client, function_name)

    for role_name in roles:
        utils.log_action(f"Found data loader role: {role_name}")
        if dry_run:
            utils.plan_action(plan, account.label, "Delete", "IAM role", role_name,
                              "Managed policies detached and inline policies deleted first")
        else:
            delete_role(iam, role_name)


def show_cleanup_summary(config: MigrationConfig, sides: List[str]) -> None:
    utils.log_info("Migration Resources Cleanup Summary:")
    utils.log_info("Resources to be cleaned up:")
    for side in sides:
        account_config = getattr(config, side)
        kind, _ = _BUCKET_FOR_SIDE[side]
        utils.log_info(f"  {side.capitalize()} Account:")
        utils.log_info(f"    - CloudFormation stack: {account_config.migration_setup_stack_name}")
        utils.log_info(f"    - S3 {kind} bucket ({config.cleanup.lifecycle_expiration_days}-day lifecycle)")
        if side == "source":
            utils.log_info("    - Test data loader Lambda function and IAM role (if deployed)")
    utils.log_info("Resources that will be PRESERVED:")
    utils.log_info("  - All Redis clusters and data")
    utils.log_info("  - VPC and networking infrastructure")
    utils.log_info("  - Source and target infrastructure stacks")


def selected_sides(source_only: bool = False, target_only: bool = False) -> List[str]:
    """Target is processed before source."""
    sides = []
    if not source_only:
        sides.append("target")
    if not target_only:
        sides.append("source")
    return sides


def run_cleanup(
    config: MigrationConfig,
    dry_run: bool = False,
    source_only: bool = False,
    target_only: bool = False,
    accounts: Optional[Dict[str, AwsAccount]] = None,
) -> bool:
    """
    Run Phase A for the selected accounts. Confirmation is the caller's job.

    Args:
        accounts: Pre-built {'source': ..., 'target': ...} handles (built from config if omitted)

    Returns:
        bool: True when every stack deletion that was started completed
    """
    accounts = accounts or {}
    sides = selected_sides(source_only, target_only)
    plan: List[Dict[str, Any]] = []
    success = True

    for side in sides:
        account_config = getattr(config, side)
        account = accounts.get(side) or AwsAccount(
            side, account_config.profile, account_config.region, config.aws_sdk_config
        )
        utils.log_section(f"Cleaning up {side} account migration resources")
        cleanup_bucket(account, account_config.migration_setup_stack_name, config, dry_run, plan)
        if not delete_setup_stack(account, account_config.migration_setup_stack_name, dry_run, plan):
            success = False
        if side == "source":
            with utils.handle_aws_operation("Cleaning up data loader resources",
                                            suppress_errors=True, as_warning=True):
                cleanup_data_loader(account, dry_run, plan)

    if dry_run:
        utils.export_action_plan(plan, SCRIPT_NAME)
        utils.log_info(f"[DRY RUN] {len(plan)} action(s) planned, nothing was changed")
    elif success:
        utils.log_success("Migration resources cleanup completed!")
        utils.log_info(f"- S3 buckets: Set to auto-delete in {config.cleanup.lifecycle_expiration_days} days")
        utils.log_info("- CloudFormation stacks: Deleted (with their Lambda functions and IAM roles)")
        utils.log_info("- Data loader: Tagged Lambda function and IAM role removed (if present)")
        utils.log_info("- Redis clusters: Preserved and untouched")
    return success


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Clean up migration setup resources (buckets and setup stacks), preserving Redis clusters"
    )
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE,
                        help=f"Migration configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be deleted without actually deleting")
    parser.add_argument("--force", action="store_true", help="Skip confirmation prompts")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--source-only", action="store_true", help="Clean up only source account resources")
    scope.add_argument("--target-only", action="store_true", help="Clean up only target account resources")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    utils.setup_logging(SCRIPT_NAME)
    start_time = datetime.datetime.now()
    utils.log_script_start(SCRIPT_NAME, "ElastiCache migration resources cleanup")

    try:
        utils.check_prerequisites(args.config)
        config = load_config(args.config, scope="cleanup")
        sides = selected_sides(args.source_only, args.target_only)
        accounts = {
            side: AwsAccount(side, getattr(config, side).profile, getattr(config, side).region,
                             config.aws_sdk_config)
            for side in sides
        }

        verify_redis_health([accounts[side] for side in sides])

        if args.force or utils.is_auto_run():
            utils.log_info("Force mode enabled, skipping confirmation")
        else:
            utils.log_warning("This will delete migration setup resources!")
            show_cleanup_summary(config, sides)
            if args.dry_run:
                utils.log_info("This is a DRY RUN - no resources will actually be deleted")
            if not utils.prompt_for_confirmation("Do you want to proceed with the cleanup?"):
                utils.log_info("Cleanup cancelled by user")
                return 1

        utils.log_info("Beginning cleanup process...")
        ok = run_cleanup(config, args.dry_run, args.source_only, args.target_only, accounts)
        return 0 if ok else 1

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
