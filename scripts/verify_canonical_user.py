#!/usr/bin/env python3
"""
ElastiCache Canonical User ID Verification

Checks that the built-in ElastiCache canonical user ID is still accepted by S3:
1. Create a temporary bucket and grant the canonical user READ/WRITE/READ_ACP
2. Read the bucket ACL back and confirm the grantee is present
3. If a Redis cluster exists, snapshot it and export the snapshot to the bucket
4. Remove the temporary snapshot and bucket (unless --no-cleanup)

Usage:
    python scripts/verify_canonical_user.py [region] [--profile PROFILE] [--region REGION]
        [--dry-run] [--no-cleanup]
"""

import argparse
import datetime
import sys
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

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

from sslib.aws_client import AwsAccount, validate_aws_region
from sslib.buckets import ELASTICACHE_CANONICAL_USER_ID, get_canonical_user_id
from sslib.errors import MigrationToolkitError, PrerequisiteError
from sslib.snapshots import wait_for_snapshot

SCRIPT_NAME = "verify-canonical-user"
DEFAULT_REGION = "us-east-1"


def probe_bucket_name(account_id: str, region: str, now: Optional[float] = None) -> str:
    return f"elasticache-canonical-test-{account_id}-{region}-{int(now if now is not None else time.time())}"


def create_test_bucket(s3, bucket: str, region: str, owner_canonical_id: str) -> None:
    """Create the bucket and grant the ElastiCache canonical user access to it."""
    utils.log_action(f"Creating test bucket: {bucket}")
    kwargs = {"Bucket": bucket}
    if region != "us-east-1":
        kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
    s3.create_bucket(**kwargs)

    # ACLs are disabled on new buckets by default; re-enable them for the grant
    s3.put_bucket_ownership_controls(
        Bucket=bucket,
        OwnershipControls={"Rules": [{"ObjectOwnership": "BucketOwnerPreferred"}]},
    )

    utils.log_action("Setting bucket ACL with ElastiCache canonical user...")
    s3.put_bucket_acl(
        Bucket=bucket,
        GrantFullControl=f"id={owner_canonical_id}",
        GrantRead=f"id={ELASTICACHE_CANONICAL_USER_ID}",
        GrantWrite=f"id={ELASTICACHE_CANONICAL_USER_ID}",
        GrantReadACP=f"id={ELASTICACHE_CANONICAL_USER_ID}",
    )
    utils.log_success("Bucket created and ACL set successfully")


def canonical_user_permissions(s3, bucket: str) -> List[str]:
    """Permissions granted to the ElastiCache canonical user in the bucket ACL."""
    grants = s3.get_bucket_acl(Bucket=bucket).get("Grants", [])
    return sorted(
        grant["Permission"]
        for grant in grants
        if grant.get("Grantee", {}).get("ID") == ELASTICACHE_CANONICAL_USER_ID
    )


def verify_bucket_acl(s3, bucket: str) -> bool:
    utils.log_action("Verifying bucket ACL...")
    permissions = canonical_user_permissions(s3, bucket)
    if not permissions:
        utils.log_error("ElastiCache canonical user NOT found in bucket ACL")
        utils.log_error(f"Expected canonical user ID: {ELASTICACHE_CANONICAL_USER_ID}")
        return False
    utils.log_success("ElastiCache canonical user found in bucket ACL")
    for permission in permissions:
        utils.log_info(f"  Permission: {permission}")
    return True


def probe_snapshot_export(
    elasticache,
    bucket: str,
    dry_run: bool = False,
    sleep: Callable[[float], Any] = time.sleep,
) -> Optional[bool]:
    """
    Export a throwaway snapshot of the first Redis cluster into ``bucket``.

    Returns:
        bool: whether the export was accepted, or None when it could not be attempted
    """
    utils.log_action("Checking for existing ElastiCache clusters...")
    clusters = [
        c["CacheClusterId"]
        for c in elasticache.describe_cache_clusters().get("CacheClusters", [])
        if c.get("Engine") == "redis"
    ]
    if not clusters:
        utils.log_warning("No Redis clusters found - cannot test actual export operation")
        return None

    cluster_id = clusters[0]
    utils.log_info(f"Found Redis cluster: {cluster_id}")
    if dry_run:
        utils.log_info(f"[DRY RUN] Would test export operation with cluster: {cluster_id}")
        return None

    snapshot_name = f"canonical-test-{int(time.time())}"
    utils.log_action(f"Creating test snapshot: {snapshot_name}")
    try:
        elasticache.create_snapshot(CacheClusterId=cluster_id, SnapshotName=snapshot_name)
    except ClientError as e:
        utils.log_warning(utils.describe_aws_error("Failed to create snapshot - cluster may not support snapshots", e))
        return None

    try:
        utils.log_info("Waiting for snapshot to be available...")
        try:
            wait_for_snapshot(elasticache, snapshot_name, interval=30, max_attempts=60, sleep=sleep)
        except MigrationToolkitError as e:
            utils.log_warning(f"Snapshot did not become available: {e}")
            return None

        utils.log_action("Testing export operation to S3...")
        try:
            elasticache.copy_snapshot(
                SourceSnapshotName=snapshot_name,
                TargetSnapshotName=f"{snapshot_name}-export",
                TargetBucket=bucket,
            )
        except ClientError as e:
            utils.log_error(utils.describe_aws_error("Export operation failed", e))
            utils.log_error("This may indicate an incorrect canonical user ID")
            return False
        utils.log_success("Export operation initiated successfully")
        utils.log_info("This confirms the canonical user ID is correct")
        return True
    finally:
        utils.log_action("Cleaning up test snapshot...")
        with utils.handle_aws_operation(f"Deleting snapshot {snapshot_name}", suppress_errors=True, as_warning=True):
            elasticache.delete_snapshot(SnapshotName=snapshot_name)


def cleanup_test_bucket(s3, bucket: str) -> None:
    """Empty and delete the test bucket; failures leave it for manual cleanup."""
    utils.log_action(f"Cleaning up test bucket: {bucket}")
    with utils.handle_aws_operation(f"Deleting bucket {bucket} (may need manual cleanup)",
                                    suppress_errors=True, as_warning=True):
        for page in s3.get_paginator("list_objects_v2").paginate(Bucket=bucket):
            keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
            if keys:
                s3.delete_objects(Bucket=bucket, Delete={"Objects": keys})
        s3.delete_bucket(Bucket=bucket)


def run_verification(
    account: AwsAccount,
    dry_run: bool = False,
    cleanup: bool = True,
    sleep: Callable[[float], Any] = time.sleep,
) -> bool:
    """
    Returns:
        bool: True when the ACL grant round-trips and no export attempt failed
    """
    s3 = account.client("s3")
    owner_canonical_id = get_canonical_user_id(s3)
    utils.log_info(f"Account canonical user ID: {owner_canonical_id}")

    bucket = probe_bucket_name(account.account_id, account.region)
    if dry_run:
        utils.log_info(f"[DRY RUN] Would create bucket {bucket} and grant {ELASTICACHE_CANONICAL_USER_ID}")
        probe_snapshot_export(account.client("elasticache"), bucket, dry_run=True)
        return True

    try:
        create_test_bucket(s3, bucket, account.region, owner_canonical_id)
    except ClientError as e:
        utils.log_error(utils.describe_aws_error("Failed to set bucket ACL - canonical user ID may be invalid", e))
        if cleanup:
            cleanup_test_bucket(s3, bucket)
        return False

    try:
        success = verify_bucket_acl(s3, bucket)
        if success:
            export_result = probe_snapshot_export(account.client("elasticache"), bucket, sleep=sleep)
            success = export_result is not False
        return success
    finally:
        if cleanup:
            cleanup_test_bucket(s3, bucket)
        else:
            utils.log_info(f"Cleanup disabled - leaving test bucket: {bucket}")


def show_verification_results(success: bool, region: str, profile: Optional[str]) -> None:
    utils.log_section("VERIFICATION RESULTS")
    utils.log_info(f"Region tested: {region}")
    utils.log_info(f"Profile used: {profile or 'default'}")
    utils.log_info(f"Expected canonical user ID: {ELASTICACHE_CANONICAL_USER_ID}")
    if success:
        utils.log_success("Canonical user ID verification PASSED")
    else:
        utils.log_error("Canonical user ID verification FAILED")
        utils.log_error("The canonical user ID may have changed; check the ElastiCache documentation "
                        "for exporting backups to S3")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify the ElastiCache canonical user ID for a region")
    parser.add_argument("region_arg", nargs="?", metavar="region", help=f"Region to test (default: {DEFAULT_REGION})")
    parser.add_argument("--profile", default=None, help="AWS credential profile (default: default chain)")
    parser.add_argument("--region", default=None, help="Region to test (overrides the positional argument)")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done without doing it")
    parser.add_argument("--no-cleanup", action="store_true", help="Don't delete test resources")
    args = parser.parse_args(argv)
    args.region = args.region or args.region_arg or DEFAULT_REGION
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    utils.setup_logging(SCRIPT_NAME)
    start_time = datetime.datetime.now()
    utils.log_script_start(SCRIPT_NAME, "ElastiCache canonical user ID verification")

    try:
        utils.check_prerequisites()
        if not validate_aws_region(args.region):
            raise PrerequisiteError(f"Invalid AWS region: {args.region}")
        account = AwsAccount("verification", args.profile, args.region)
        utils.verify_account_credentials([account])
        utils.log_success("Prerequisites check passed")

        success = run_verification(account, dry_run=args.dry_run, cleanup=not args.no_cleanup)
        show_verification_results(success, args.region, args.profile)
        return 0 if success else 1

    except MigrationToolkitError as e:
        utils.log_error("Verification failed", e)
    except (ClientError, NoCredentialsError, BotoCoreError) as e:
        utils.log_error(utils.describe_aws_error("Verification failed", e))
    except KeyboardInterrupt:
        utils.log_warning("Verification interrupted by user")
    finally:
        utils.log_script_end(SCRIPT_NAME, start_time)
    return 1


if __name__ == "__main__":
    sys.exit(main())
