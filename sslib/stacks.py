"""
sslib.stacks — CloudFormation stack inspection.

Lookups return an empty value instead of raising: a missing stack, a missing
output key and a transient API error are all treated as "not found" so the
caller can apply one fail-fast check on the result.
"""

import logging
from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from sslib.errors import MissingResourceError

logger = logging.getLogger(__name__)

# Output keys consumed by the toolkit
OUTPUT_CLUSTER_ID = "RedisClusterId"
OUTPUT_REDIS_ENDPOINT = "RedisEndpoint"
OUTPUT_REDIS_PORT = "RedisPort"
OUTPUT_EXPORT_BUCKET = "ExportBucketName"
OUTPUT_IMPORT_BUCKET = "ImportBucketName"
OUTPUT_CANONICAL_ID = "ElastiCacheCanonicalUserId"
OUTPUT_SECURITY_GROUP = "SecurityGroupId"
OUTPUT_SUBNET_IDS = "SubnetIds"


def _describe_stack(cfn, stack_name: str) -> Optional[dict]:
    try:
        stacks = cfn.describe_stacks(StackName=stack_name).get("Stacks", [])
    except (ClientError, BotoCoreError) as e:
        logger.debug("describe_stacks(%s) failed: %s", stack_name, e)
        return None
    return stacks[0] if stacks else None


def get_stack_outputs(cfn, stack_name: str) -> Dict[str, str]:
    """
    Return every output of a stack as {OutputKey: OutputValue}.

    Args:
        cfn: CloudFormation client
        stack_name: Stack name or ID

    Returns:
        dict: Output map, empty when the stack cannot be described
    """
    stack = _describe_stack(cfn, stack_name)
    if not stack:
        return {}
    return {o["OutputKey"]: o.get("OutputValue", "") for o in stack.get("Outputs", [])}


def get_stack_output(cfn, stack_name: str, output_key: str) -> str:
    """
    Return a single stack output value, or "" on any lookup failure.

    Args:
        cfn: CloudFormation client
        stack_name: Stack name or ID
        output_key: Exact OutputKey to read

    Returns:
        str: The output value or an empty string
    """
    return get_stack_outputs(cfn, stack_name).get(output_key, "") or ""


def require_stack_output(cfn, stack_name: str, output_key: str, what: str = "") -> str:
    """Like get_stack_output() but raises MissingResourceError for an empty result."""
    value = get_stack_output(cfn, stack_name, output_key)
    if not value:
        label = what or output_key
        raise MissingResourceError(f"Could not find {label} in stack outputs ({stack_name}.{output_key})")
    return value


def get_stack_status(cfn, stack_name: str) -> Optional[str]:
    """
    Return the StackStatus string, or None when the stack does not exist.

    Deleted stacks addressed by name are reported as absent by CloudFormation.
    """
    stack = _describe_stack(cfn, stack_name)
    if not stack:
        return None
    return stack.get("StackStatus")


def stack_exists(cfn, stack_name: str) -> bool:
    status = get_stack_status(cfn, stack_name)
    return status is not None and status != "DELETE_COMPLETE"
