"""
sslib.buckets — S3 helpers for snapshot export, cross-account copy and cleanup.

Zero dependency on utils.py.
"""

import logging
import os
import re
import tempfile
from typing import Dict, Optional

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# Canonical user that ElastiCache uses to read/write snapshot objects in S3.
# Setup stacks may export a region-specific value as ElastiCacheCanonicalUserId.
ELASTICACHE_CANONICAL_USER_ID = "540804c33a284a299d2547575ce1010f2312ef3da9b3a053c8bc45bf233e4353"

LIFECYCLE_RULE_ID = "MigrationCleanupRetention"


def conventional_bucket_name(kind: str, account_id: str, region: str) -> str:
    """Name used by the migration setup templates: elasticache-{export|import}-<account>-<region>."""
    return f"elasticache-{kind}-{account_id}-{region}"


def rdb_key_pattern(export_name: str) -> "re.Pattern":
    return re.compile(rf"^{re.escape(export_name)}.*\.rdb$")


def find_rdb_file(s3, bucket: str, export_name: str) -> Optional[str]:
    """
    Return the first key in ``bucket`` that looks like the exported RDB file.

    ElastiCache names export objects ``<export-name>-<node>.rdb``; there is no
    completion signal, so presence of the object is the signal.

    Returns:
        str: the object key, or None when nothing matches yet
    """
    pattern = rdb_key_pattern(export_name)
    response = s3.list_objects_v2(Bucket=bucket, Prefix=export_name)
    keys = sorted(obj["Key"] for obj in response.get("Contents", []) if pattern.match(obj["Key"]))
    return keys[0] if keys else None


def get_canonical_user_id(s3) -> str:
    """Canonical user ID of the account behind ``s3`` (owner of its buckets)."""
    return s3.list_buckets()["Owner"]["ID"]


def bucket_exists(s3, bucket: str) -> bool:
    try:
        s3.head_bucket(Bucket=bucket)
        return True
    except ClientError as e:
        logger.debug("head_bucket(%s) failed: %s", bucket, e)
        return False


def copy_object_via_local_file(source_s3, source_bucket: str, key: str, target_s3, target_bucket: str) -> int:
    """
    Copy an object across accounts through a local temporary file.

    The two clients belong to different credential profiles, so a server-side
    copy is not possible. The temporary file is always removed.

    Returns:
        int: size of the copied object in bytes
    """
    fd, local_path = tempfile.mkstemp(suffix=".rdb", prefix="redis-migration-")
    os.close(fd)
    try:
        logger.info("Downloading s3://%s/%s", source_bucket, key)
        source_s3.download_file(source_bucket, key, local_path)
        size = os.path.getsize(local_path)
        logger.info("Uploading to s3://%s/%s", target_bucket, key)
        target_s3.upload_file(local_path, target_bucket, key)
        return size
    finally:
        if os.path.exists(local_path):
            os.remove(local_path)


def grant_elasticache_access(
    s3,
    bucket: str,
    key: str,
    owner_canonical_id: str,
    elasticache_canonical_id: str = ELASTICACHE_CANONICAL_USER_ID,
) -> None:
    """Give the bucket owner full control and ElastiCache read access to ``key``."""
    s3.put_object_acl(
        Bucket=bucket,
        Key=key,
        GrantFullControl=f"id={owner_canonical_id}",
        GrantRead=f"id={elasticache_canonical_id}",
        GrantReadACP=f"id={elasticache_canonical_id}",
    )


def expiration_lifecycle(expiration_days: int = 30, noncurrent_days: int = 7) -> Dict:
    return {
        "Rules": [
            {
                "ID": LIFECYCLE_RULE_ID,
                "Status": "Enabled",
                "Filter": {},
                "Expiration": {"Days": expiration_days},
                "NoncurrentVersionExpiration": {"NoncurrentDays": noncurrent_days},
            }
        ]
    }


def put_expiration_lifecycle(s3, bucket: str, expiration_days: int = 30, noncurrent_days: int = 7) -> None:
    s3.put_bucket_lifecycle_configuration(
        Bucket=bucket,
        LifecycleConfiguration=expiration_lifecycle(expiration_days, noncurrent_days),
    )
