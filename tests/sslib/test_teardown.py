"""
Unit tests for sslib.teardown — matcher-based discovery and best-effort deletion.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

from botocore.exceptions import ClientError, WaiterError

sys.path.insert(0, str(Path(__file__).parent.parent.parent))
from sslib.teardown import (
    delete_function,
    delete_role,
    delete_stack,
    find_functions,
    find_roles,
)


def _denied(operation):
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, operation)


def _iam(role_pages=None, failing_roles=()):
    """IAM mock whose per-role listings fail for the roles in failing_roles."""
    iam = MagicMock()

    def get_paginator(name):
        paginator = MagicMock()
        if name == "list_roles":
            paginator.paginate.return_value = role_pages or [{}]
            return paginator

        def paginate(RoleName):
            if RoleName in failing_roles:
                raise _denied(name)
            if name == "list_attached_role_policies":
                return [{"AttachedPolicies": [{"PolicyArn": "arn:aws:iam::aws:policy/p"}]}]
            if name == "list_role_policies":
                return [{"PolicyNames": ["inline"]}]
            return [{"InstanceProfiles": [{"InstanceProfileName": "profile"}]}]

        paginator.paginate.side_effect = paginate
        return paginator

    iam.get_paginator.side_effect = get_paginator
    return iam


class TestDiscovery:
    def test_functions_filtered_by_matcher(self):
        client = MagicMock()
        client.get_paginator.return_value.paginate.return_value = [{"Functions": [
            {"FunctionName": "loader", "FunctionArn": "arn:fn:loader"},
            {"FunctionName": "orders", "FunctionArn": "arn:fn:orders"},
        ]}]
        client.list_tags.side_effect = lambda Resource: {
            "Tags": {"component": "x"} if Resource == "arn:fn:loader" else {}
        }

        assert find_functions(client, lambda name, tags: tags.get("component") == "x") == ["loader"]

    def test_unreadable_tags_are_empty(self):
        client = MagicMock()
        client.get_paginator.return_value.paginate.return_value = [{"Functions": [
            {"FunctionName": "loader", "FunctionArn": "arn:fn:loader"},
        ]}]
        client.list_tags.side_effect = _denied("ListTags")
        seen = []

        find_functions(client, lambda name, tags: seen.append(tags))
        assert seen == [{}]

    def test_service_linked_roles_skipped(self):
        iam = _iam([{"Roles": [
            {"RoleName": "AWSServiceRoleForLambda", "Path": "/aws-service-role/lambda/"},
            {"RoleName": "app-role", "Path": "/"},
        ]}])
        iam.list_role_tags.return_value = {"Tags": [{"Key": "k", "Value": "v"}]}
        seen = []

        assert find_roles(iam, lambda name, tags: seen.append((name, tags)) or True) == ["app-role"]
        assert seen == [("app-role", {"k": "v"})]


class TestDeleteRole:
    def test_detaches_and_removes_before_delete(self):
        iam = _iam()
        order = []
        iam.detach_role_policy.side_effect = lambda **kw: order.append("detach")
        iam.delete_role_policy.side_effect = lambda **kw: order.append("inline")
        iam.remove_role_from_instance_profile.side_effect = lambda **kw: order.append("profile")
        iam.delete_role.side_effect = lambda **kw: order.append("role")

        assert delete_role(iam, "loader-role") is True
        assert order == ["detach", "inline", "profile", "role"]

    def test_listing_failure_still_attempts_delete(self):
        iam = _iam(failing_roles=("a-validator-role",))

        assert delete_role(iam, "a-validator-role") is True
        iam.detach_role_policy.assert_not_called()
        iam.delete_role.assert_called_once_with(RoleName="a-validator-role")

    def test_failure_on_one_role_does_not_affect_the_next(self):
        iam = _iam(failing_roles=("a-validator-role",))
        deleted = []

        def delete(RoleName):
            if RoleName == "a-validator-role":
                raise ClientError({"Error": {"Code": "DeleteConflict", "Message": "attached"}}, "DeleteRole")
            deleted.append(RoleName)

        iam.delete_role.side_effect = delete

        results = [delete_role(iam, name) for name in ("a-validator-role", "b-validator-role")]
        assert results == [False, True]
        assert deleted == ["b-validator-role"]


class TestDeleteFunctionAndStack:
    def test_function_failure_returns_false(self):
        client = MagicMock()
        client.delete_function.side_effect = _denied("DeleteFunction")
        assert delete_function(client, "loader") is False

    def test_function_deleted(self):
        client = MagicMock()
        assert delete_function(client, "loader") is True
        client.delete_function.assert_called_once_with(FunctionName="loader")

    def test_stack_waiter_failure_returns_false(self):
        cfn = MagicMock()
        cfn.get_waiter.return_value.wait.side_effect = WaiterError(
            name="StackDeleteComplete", reason="DELETE_FAILED", last_response={}
        )
        assert delete_stack(cfn, "redis-validator") is False
        cfn.delete_stack.assert_called_once_with(StackName="redis-validator")
