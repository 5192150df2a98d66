"""
sslib.teardown — Discovery and best-effort deletion of helper Lambdas and roles.

Both cleanup phases remove functions and IAM roles the toolkit (or the legacy
templates) left behind. Discovery takes a ``match(name, tags)`` predicate so
each phase decides what belongs to it. Deletion never raises for AWS errors:
every failed step is logged as a warning and the next step still runs.
"""

import logging
from typing import Callable, Dict, List, Mapping

from botocore.exceptions import BotoCoreError, ClientError

from sslib.tagging import tag_list_to_dict

logger = logging.getLogger(__name__)

Matcher = Callable[[str, Mapping[str, str]], bool]

_AWS_ERRORS = (ClientError, BotoCoreError)


def _warn(operation: str, error: Exception) -> None:
    if isinstance(error, ClientError):
        err = error.response.get("Error", {})
        logger.warning("%s: AWS error [%s]: %s", operation, err.get("Code", "Unknown"), err.get("Message", error))
    else:
        logger.warning("%s: %s", operation, error)


# =============================================================================
# DISCOVERY
# =============================================================================


def function_tags(lambda_client, function_arn: str) -> Dict[str, str]:
    try:
        return lambda_client.list_tags(Resource=function_arn).get("Tags", {})
    except ClientError as e:
        logger.debug("Could not read tags for %s: %s", function_arn, e)
        return {}


def role_tags(iam, role_name: str) -> Dict[str, str]:
    try:
        return tag_list_to_dict(iam.list_role_tags(RoleName=role_name).get("Tags"))
    except ClientError as e:
        logger.debug("Could not read tags for role %s: %s", role_name, e)
        return {}


def find_functions(lambda_client, match: Matcher) -> List[str]:
    """Names of Lambda functions for which ``match(name, tags)`` is true."""
    matches = []
    for page in lambda_client.get_paginator("list_functions").paginate():
        for function in page.get("Functions", []):
            name = function["FunctionName"]
            if match(name, function_tags(lambda_client, function["FunctionArn"])):
                matches.append(name)
    return matches


def find_roles(iam, match: Matcher) -> List[str]:
    """Customer-managed roles for which ``match(name, tags)`` is true; service-linked roles are skipped."""
    matches = []
    for page in iam.get_paginator("list_roles").paginate():
        for role in page.get("Roles", []):
            if role.get("Path", "/").startswith("/aws-service-role/"):
                continue
            name = role["RoleName"]
            if match(name, role_tags(iam, name)):
                matches.append(name)
    return matches


# =============================================================================
# DELETION
# =============================================================================


def delete_stack(cfn, stack_name: str) -> bool:
    try:
        cfn.delete_stack(StackName=stack_name)
        logger.info("Waiting for stack deletion: %s", stack_name)
        cfn.get_waiter("stack_delete_complete").wait(StackName=stack_name)
    except _AWS_ERRORS as e:
        _warn(f"Deleting stack {stack_name}", e)
        return False
    logger.info("Deleted stack: %s", stack_name)
    return True


def delete_function(lambda_client, function_name: str) -> bool:
    try:
        lambda_client.delete_function(FunctionName=function_name)
    except _AWS_ERRORS as e:
        _warn(f"Deleting Lambda function {function_name}", e)
        return False
    logger.info("Deleted Lambda function: %s", function_name)
    return True


def _paginate(iam, operation: str, key: str, role_name: str) -> List:
    """Every item of a per-role listing, or what was read before a failure."""
    items = []
    try:
        for page in iam.get_paginator(operation).paginate(RoleName=role_name):
            items.extend(page.get(key, []))
    except _AWS_ERRORS as e:
        _warn(f"Listing {key} of {role_name}", e)
    return items


def delete_role(iam, role_name: str) -> bool:
    """
    Detach managed policies, delete inline policies and instance profile
    links, then delete the role.

    Returns:
        bool: True when the role itself was deleted
    """
    for policy in _paginate(iam, "list_attached_role_policies", "AttachedPolicies", role_name):
        try:
            iam.detach_role_policy(RoleName=role_name, PolicyArn=policy["PolicyArn"])
        except _AWS_ERRORS as e:
            _warn(f"Detaching {policy['PolicyArn']} from {role_name}", e)

    for policy_name in _paginate(iam, "list_role_policies", "PolicyNames", role_name):
        try:
            iam.delete_role_policy(RoleName=role_name, PolicyName=policy_name)
        except _AWS_ERRORS as e:
            _warn(f"Deleting inline policy {policy_name} of {role_name}", e)

    for profile in _paginate(iam, "list_instance_profiles_for_role", "InstanceProfiles", role_name):
        try:
            iam.remove_role_from_instance_profile(
                InstanceProfileName=profile["InstanceProfileName"], RoleName=role_name
            )
        except _AWS_ERRORS as e:
            _warn(f"Removing {role_name} from {profile['InstanceProfileName']}", e)

    try:
        iam.delete_role(RoleName=role_name)
    except _AWS_ERRORS as e:
        _warn(f"Deleting IAM role {role_name}", e)
        return False
    logger.info("Deleted IAM role: %s", role_name)
    return True
