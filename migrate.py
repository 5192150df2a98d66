#!/usr/bin/env python3
"""
===========================
= REDIS MIGRATION TOOLKIT =
===========================

Title: ElastiCache Redis Cross-Account Migration
Version: v1.0.0
Date: OCT-18-2026

Description:
Migrates an ElastiCache Redis cluster from a source AWS account to a target
AWS account. The run is a fixed sequence of steps, each taking the shared
MigrationContext:

    verify stacks -> cluster info -> snapshot -> export to S3
      -> copy to target bucket -> create target cluster -> report

Any empty lookup or provider failure aborts the run. Steps already completed
are not rolled back (a created snapshot stays behind).

Usage:
    python migrate.py [migration-config.yaml] [--skip-existing-target]
"""

import argparse
import datetime
import logging
import sys
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, WaiterError

import utils
from sslib.aws_client import AwsAccount, mask_account_id
from sslib.buckets import (
    ELASTICACHE_CANONICAL_USER_ID,
    copy_object_via_local_file,
    find_rdb_file,
    get_canonical_user_id,
    grant_elasticache_access,
)
from sslib.config import DEFAULT_CONFIG_FILE, MigrationConfig, load_config
from sslib.errors import (
    ExistingStackError,
    MigrationToolkitError,
    MissingResourceError,
    PrerequisiteError,
    ProviderFailureError,
)
from sslib.polling import poll_until
from sslib.report import write_report
from sslib.snapshots import wait_for_snapshot
from sslib.stacks import (
    OUTPUT_CANONICAL_ID,
    OUTPUT_CLUSTER_ID,
    OUTPUT_EXPORT_BUCKET,
    OUTPUT_IMPORT_BUCKET,
    OUTPUT_REDIS_ENDPOINT,
    get_stack_output,
    require_stack_output,
    stack_exists,
)
from sslib.state import (
    ClusterDescriptor,
    MigrationContext,
    MigrationState,
    SnapshotDescriptor,
    SnapshotStatus,
)
from sslib.tagging import COMPONENT_TARGET_INFRASTRUCTURE, as_tag_list, component_tags

SCRIPT_NAME = "migrate"


def build_context(config: MigrationConfig) -> MigrationContext:
    """Create the account handles for both sides and wrap them in a fresh context."""
    source = AwsAccount("source", config.source.profile, config.source.region, config.aws_sdk_config)
    target = AwsAccount("target", config.target.profile, config.target.region, config.aws_sdk_config)
    return MigrationContext(config=config, source=source, target=target)


# =============================================================================
# PRELIMINARY CHECKS
# =============================================================================


def verify_stacks(ctx: MigrationContext) -> None:
    """
    Check that the stacks the migration reads from are deployed.

    Raises:
        MissingResourceError: naming the first absent stack
    """
    utils.log_section("Verifying CloudFormation stacks")
    config = ctx.config
    required = [
        (ctx.source, config.source.infrastructure_stack_name, "Source infrastructure"),
        (ctx.source, config.source.migration_setup_stack_name, "Source migration setup"),
        (ctx.target, config.target.migration_setup_stack_name, "Target migration setup"),
    ]
    for account, stack_name, label in required:
        utils.log_aws_operation("describe_stacks", "CloudFormation", account.region, stack_name)
        if not stack_exists(account.client("cloudformation"), stack_name):
            raise MissingResourceError(f"{label} stack not found: {stack_name} ({account.label} account)")
        utils.log_info(f"{label} stack found: {stack_name}")
    utils.log_success("All required stacks are deployed")


def get_cluster_info(ctx: MigrationContext) -> ClusterDescriptor:
    """Resolve the source cluster ID from stack outputs and describe the cluster."""
    utils.log_section("Source cluster")
    cluster_id = require_stack_output(
        ctx.source.client("cloudformation"),
        ctx.config.source.infrastructure_stack_name,
        OUTPUT_CLUSTER_ID,
        "source Redis cluster ID",
    )

    elasticache = ctx.source.client("elasticache")
    utils.log_aws_operation("describe_cache_clusters", "ElastiCache", ctx.source.region, cluster_id)
    try:
        clusters = elasticache.describe_cache_clusters(
            CacheClusterId=cluster_id, ShowCacheNodeInfo=True
        ).get("CacheClusters", [])
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "CacheClusterNotFound":
            clusters = []
        else:
            raise
    if not clusters:
        raise MissingResourceError(f"Source Redis cluster not found: {cluster_id}")

    cluster = clusters[0]
    endpoint = {}
    nodes = cluster.get("CacheNodes") or []
    if nodes:
        endpoint = nodes[0].get("Endpoint") or {}

    ctx.cluster = ClusterDescriptor(
        cluster_id=cluster_id,
        node_type=cluster.get("CacheNodeType", ""),
        engine_version=cluster.get("EngineVersion", ""),
        endpoint_address=endpoint.get("Address", ""),
        endpoint_port=endpoint.get("Port"),
    )
    utils.log_info(f"Cluster ID: {ctx.cluster.cluster_id}")
    utils.log_info(f"Node Type: {ctx.cluster.node_type}")
    utils.log_info(f"Engine Version: {ctx.cluster.engine_version}")
    return ctx.cluster


# =============================================================================
# SNAPSHOT
# =============================================================================


def snapshot_name_for(when: Optional[datetime.datetime] = None) -> str:
    return f"migration-{(when or datetime.datetime.now()).strftime('%Y%m%d-%H%M%S')}"


def create_snapshot(
    ctx: MigrationContext,
    sleep: Callable[[float], Any] = time.sleep,
    now: Optional[datetime.datetime] = None,
) -> SnapshotDescriptor:
    """
    Create a new snapshot of the source cluster and wait until it is available,
    or adopt the configured existing snapshot without checking it.

    Raises:
        ProviderFailureError: snapshot reported failed / not-found / deleting
        PollTimeoutError: still pending after the configured number of attempts
    """
    utils.log_phase("Step 1: Snapshot")
    options = ctx.config.snapshot

    if not options.create_new:
        ctx.snapshot_name = options.existing_snapshot_name
        utils.log_info(f"Using existing snapshot: {ctx.snapshot_name}")
        ctx.advance(MigrationState.SNAPSHOT_READY)
        return SnapshotDescriptor(ctx.snapshot_name, SnapshotStatus.AVAILABLE)

    name = snapshot_name_for(now)
    elasticache = ctx.source.client("elasticache")

    utils.log_action(f"Creating snapshot {name} of cluster {ctx.cluster_id}")
    utils.log_aws_operation("create_snapshot", "ElastiCache", ctx.source.region, name)
    elasticache.create_snapshot(CacheClusterId=ctx.cluster_id, SnapshotName=name)

    def report_progress(status: SnapshotStatus, attempt: int, max_attempts: int) -> None:
        utils.log_info(f"Snapshot status: {status.value} (attempt {attempt}/{max_attempts})")

    result = wait_for_snapshot(
        elasticache,
        name,
        interval=options.poll_interval_seconds,
        max_attempts=options.max_attempts,
        sleep=sleep,
        on_pending=report_progress,
    )

    ctx.snapshot_name = name
    utils.log_success(f"Snapshot {name} is available after {result.attempts} check(s)")
    ctx.advance(MigrationState.SNAPSHOT_READY)
    return SnapshotDescriptor(name, result.value)


# =============================================================================
# EXPORT
# =============================================================================


def export_to_s3(ctx: MigrationContext, sleep: Callable[[float], Any] = time.sleep) -> str:
    """
    Export the snapshot to the source export bucket and wait for the RDB object.

    Returns:
        str: the RDB object key
    """
    utils.log_phase("Step 2: Export to S3")
    ctx.export_bucket = require_stack_output(
        ctx.source.client("cloudformation"),
        ctx.config.source.migration_setup_stack_name,
        OUTPUT_EXPORT_BUCKET,
        "export bucket name",
    )
    ctx.export_name = f"{ctx.snapshot_name}-export"

    utils.log_action(f"Exporting snapshot {ctx.snapshot_name} to s3://{ctx.export_bucket}")
    utils.log_aws_operation("copy_snapshot", "ElastiCache", ctx.source.region, ctx.export_name)
    ctx.source.client("elasticache").copy_snapshot(
        SourceSnapshotName=ctx.snapshot_name,
        TargetSnapshotName=ctx.export_name,
        TargetBucket=ctx.export_bucket,
    )

    s3 = ctx.source.client("s3")
    options = ctx.config.export
    result = poll_until(
        lambda: find_rdb_file(s3, ctx.export_bucket, ctx.export_name),
        lambda key: key is not None,
        f"export of {ctx.export_name}",
        interval=options.poll_interval_seconds,
        max_attempts=options.max_attempts,
        sleep=sleep,
        on_pending=lambda _key, attempt, total: utils.log_info(
            f"Export in progress... (attempt {attempt}/{total})"
        ),
    )

    ctx.rdb_file = result.value
    utils.log_success(f"Export completed: {ctx.rdb_file}")
    ctx.advance(MigrationState.EXPORTED)
    return ctx.rdb_file


# =============================================================================
# CROSS-ACCOUNT COPY
# =============================================================================


def copy_to_target(ctx: MigrationContext) -> str:
    """
    Copy the RDB file into the target import bucket and grant ElastiCache access.

    Returns:
        str: the import path ``<bucket>/<key>``
    """
    utils.log_phase("Step 3: Copy to target account")
    target_cfn = ctx.target.client("cloudformation")
    setup_stack = ctx.config.target.migration_setup_stack_name

    ctx.import_bucket = require_stack_output(target_cfn, setup_stack, OUTPUT_IMPORT_BUCKET, "import bucket name")
    elasticache_canonical_id = get_stack_output(target_cfn, setup_stack, OUTPUT_CANONICAL_ID)
    if not elasticache_canonical_id:
        utils.log_warning("Setup stack has no ElastiCache canonical ID output; using the built-in value")
        elasticache_canonical_id = ELASTICACHE_CANONICAL_USER_ID

    target_s3 = ctx.target.client("s3")
    size = copy_object_via_local_file(
        ctx.source.client("s3"), ctx.export_bucket, ctx.rdb_file, target_s3, ctx.import_bucket
    )
    utils.log_info(f"Copied {utils.format_bytes(size)} to s3://{ctx.import_bucket}/{ctx.rdb_file}")

    utils.log_action("Setting object permissions for ElastiCache import")
    owner_canonical_id = get_canonical_user_id(target_s3)
    grant_elasticache_access(target_s3, ctx.import_bucket, ctx.rdb_file, owner_canonical_id, elasticache_canonical_id)

    utils.log_success("File copied to target account")
    ctx.advance(MigrationState.COPIED_TO_TARGET)
    return f"{ctx.import_bucket}/{ctx.rdb_file}"


# =============================================================================
# TARGET CLUSTER
# =============================================================================


def _read_template(template_file: str) -> str:
    path = utils.resolve_project_path(template_file)
    if not path.is_file():
        raise PrerequisiteError(f"Target infrastructure template not found: {template_file}")
    return path.read_text(encoding="utf-8")


def create_target_cluster(ctx: MigrationContext, skip_existing: bool = False) -> bool:
    """
    Create the target infrastructure stack, importing the RDB file.

    An existing target stack is an error unless ``skip_existing`` is set, in
    which case the step is skipped with a warning.

    Returns:
        bool: True if the stack was created by this run
    """
    utils.log_phase("Step 4: Create target cluster")
    cfn = ctx.target.client("cloudformation")
    stack_name = ctx.config.target.infrastructure_stack_name

    if stack_exists(cfn, stack_name):
        if not skip_existing:
            raise ExistingStackError(
                f"Target infrastructure stack {stack_name} already exists. Delete it first or "
                "re-run with --skip-existing-target to keep it and skip cluster creation."
            )
        utils.log_warning(f"Target stack {stack_name} already exists; skipping cluster creation")
        ctx.extras["cluster_skipped"] = True
        ctx.advance(MigrationState.CLUSTER_CREATED)
        return False

    template_body = _read_template(ctx.config.target_template_file)
    parameters = {
        "RedisNodeType": ctx.config.target_node_type,
        "EnablePersistence": "true",
        "ImportFromS3": "true",
        "S3ImportPath": f"{ctx.import_bucket}/{ctx.rdb_file}",
        "SourceAccountId": ctx.source.account_id,
    }

    utils.log_action(f"Creating target stack {stack_name}")
    utils.log_aws_operation("create_stack", "CloudFormation", ctx.target.region, stack_name)
    cfn.create_stack(
        StackName=stack_name,
        TemplateBody=template_body,
        Parameters=[{"ParameterKey": k, "ParameterValue": v} for k, v in parameters.items()],
        Tags=as_tag_list(component_tags(COMPONENT_TARGET_INFRASTRUCTURE, {"SourceSnapshot": ctx.snapshot_name})),
    )

    utils.log_info("Waiting for stack creation (this may take 10-15 minutes)...")
    try:
        cfn.get_waiter("stack_create_complete").wait(StackName=stack_name)
    except WaiterError as e:
        raise ProviderFailureError(f"Target stack {stack_name} did not reach CREATE_COMPLETE: {e}") from e

    ctx.target_stack_created = True
    endpoint = get_stack_output(cfn, stack_name, OUTPUT_REDIS_ENDPOINT)
    if endpoint:
        utils.log_info(f"Target Redis endpoint: {endpoint}")
    utils.log_success("Target cluster created")
    ctx.advance(MigrationState.CLUSTER_CREATED)
    return True


# =============================================================================
# REPORT
# =============================================================================


def generate_report(ctx: MigrationContext, output_dir: Optional[Path] = None,
                    when: Optional[datetime.datetime] = None) -> Path:
    utils.log_phase("Step 5: Report")
    path = write_report(ctx, output_dir or utils.get_output_dir(), when)
    ctx.report_path = str(path)
    utils.log_success(f"Migration report written to {path}")
    ctx.advance(MigrationState.REPORTED)
    return path


def run_migration(
    ctx: MigrationContext,
    skip_existing_target: bool = False,
    sleep: Callable[[float], Any] = time.sleep,
    output_dir: Optional[Path] = None,
) -> MigrationContext:
    """Run every step in order; the first failure propagates."""
    verify_stacks(ctx)
    get_cluster_info(ctx)
    create_snapshot(ctx, sleep=sleep)
    export_to_s3(ctx, sleep=sleep)
    copy_to_target(ctx)
    create_target_cluster(ctx, skip_existing=skip_existing_target)
    generate_report(ctx, output_dir=output_dir)
    return ctx


# =============================================================================
# CLI
# =============================================================================


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Migrate an ElastiCache Redis cluster to another AWS account"
    )
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE,
                        help=f"Migration configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--skip-existing-target", action="store_true",
                        help="If the target infrastructure stack exists, skip cluster creation instead of failing")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Console log level (the log file always records DEBUG)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    utils.setup_logging(SCRIPT_NAME, console_level=getattr(logging, args.log_level))
    start_time = datetime.datetime.now()
    utils.log_script_start(SCRIPT_NAME, "ElastiCache Redis cross-account migration")

    try:
        utils.check_prerequisites(args.config)
        config = load_config(args.config, scope="migration")
        ctx = build_context(config)
        utils.verify_account_credentials([ctx.source, ctx.target])

        run_migration(ctx, skip_existing_target=args.skip_existing_target)

        utils.log_success("Migration completed successfully")
        utils.log_info(f"Source account: {mask_account_id(ctx.source.account_id)}")
        utils.log_info(f"Report: {ctx.report_path}")
        if config.verify_data and config.validation.deploy_validation:
            utils.log_info(f"Next: python scripts/validate_migration.py {args.config}")
        return 0

    except MigrationToolkitError as e:
        utils.log_error("Migration failed", e)
    except (ClientError, NoCredentialsError, WaiterError, BotoCoreError) as e:
        utils.log_error(utils.describe_aws_error("Migration failed", e))
    except KeyboardInterrupt:
        utils.log_warning("Migration interrupted by user")
    finally:
        utils.log_script_end(SCRIPT_NAME, start_time)
    return 1


if __name__ == "__main__":
    sys.exit(main())
