"""
Unit tests for sslib.lambdas — packaging, role/function deployment and invocation.
"""

import io
import json
import sys
import zipfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

sys.path.insert(0, str(Path(__file__).parent.parent.parent))
from sslib.errors import PollTimeoutError
from sslib.lambdas import (
    LAMBDAS_DIR,
    build_deployment_package,
    deploy_function,
    deploy_handler,
    ensure_execution_role,
    invoke_function,
    split_output_list,
    vpc_execution_policy_arn,
)


def _client_error(code, operation="Op"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestPackaging:
    def test_handler_zipped_as_index(self):
        package = build_deployment_package(LAMBDAS_DIR / "redis_validator.py")
        with zipfile.ZipFile(io.BytesIO(package)) as archive:
            assert archive.namelist() == ["index.py"]
            assert "def lambda_handler" in archive.read("index.py").decode()

    def test_split_output_list(self):
        assert split_output_list("subnet-1, subnet-2,") == ["subnet-1", "subnet-2"]
        assert split_output_list("") == []

    def test_policy_arn_partition(self):
        assert vpc_execution_policy_arn("aws-us-gov").startswith("arn:aws-us-gov:iam::aws:policy/")


class TestEnsureExecutionRole:
    def test_existing_role_reused(self):
        iam = MagicMock()
        iam.get_role.return_value = {"Role": {"Arn": "arn:role"}}
        assert ensure_execution_role(iam, "r", {}) == "arn:role"
        iam.create_role.assert_not_called()

    def test_missing_role_created_and_tagged(self):
        iam = MagicMock()
        iam.get_role.side_effect = _client_error("NoSuchEntity")
        iam.create_role.return_value = {"Role": {"Arn": "arn:new"}}
        arn = ensure_execution_role(iam, "r", {"redis-migration:component": "validation"})
        assert arn == "arn:new"
        assert iam.create_role.call_args.kwargs["Tags"] == [
            {"Key": "redis-migration:component", "Value": "validation"}
        ]
        iam.attach_role_policy.assert_called_once_with(RoleName="r", PolicyArn=vpc_execution_policy_arn("aws"))

    def test_other_errors_propagate(self):
        iam = MagicMock()
        iam.get_role.side_effect = _client_error("AccessDenied")
        with pytest.raises(ClientError):
            ensure_execution_role(iam, "r", {})


class TestDeployFunction:
    def _new_function_client(self):
        client = MagicMock()
        client.get_function.side_effect = _client_error("ResourceNotFoundException")
        return client

    def test_creates_with_vpc_and_tags(self):
        client = self._new_function_client()
        client.create_function.return_value = {"FunctionArn": "arn:fn"}
        arn = deploy_function(client, "fn", "arn:role", b"zip", {"A": "1"}, {"t": "v"},
                              subnet_ids=["s1"], security_group_ids=["sg1"], sleep=MagicMock())
        assert arn == "arn:fn"
        kwargs = client.create_function.call_args.kwargs
        assert kwargs["VpcConfig"] == {"SubnetIds": ["s1"], "SecurityGroupIds": ["sg1"]}
        assert kwargs["Tags"] == {"t": "v"}
        assert kwargs["Environment"] == {"Variables": {"A": "1"}}
        client.get_waiter.assert_called_with("function_active_v2")

    def test_retries_while_role_propagates(self):
        client = self._new_function_client()
        client.create_function.side_effect = [
            _client_error("InvalidParameterValueException"),
            {"FunctionArn": "arn:fn"},
        ]
        sleep = MagicMock()
        assert deploy_function(client, "fn", "arn:role", b"zip", {}, {}, sleep=sleep) == "arn:fn"
        assert client.create_function.call_count == 2
        assert sleep.call_count == 1

    def test_role_propagation_is_bounded(self):
        client = self._new_function_client()
        client.create_function.side_effect = _client_error("InvalidParameterValueException")
        with pytest.raises(PollTimeoutError):
            deploy_function(client, "fn", "arn:role", b"zip", {}, {}, sleep=MagicMock(), role_propagation_attempts=3)
        assert client.create_function.call_count == 3

    def test_existing_function_updated(self):
        client = MagicMock()
        client.update_function_configuration.return_value = {"FunctionArn": "arn:fn"}
        assert deploy_function(client, "fn", "arn:role", b"zip", {"A": "1"}, {}) == "arn:fn"
        client.update_function_code.assert_called_once_with(FunctionName="fn", ZipFile=b"zip")
        client.create_function.assert_not_called()


class TestDeployHandler:
    def test_role_named_after_function(self):
        account = MagicMock(partition="aws")
        iam = MagicMock()
        iam.get_role.return_value = {"Role": {"Arn": "arn:role"}}
        lambda_client = MagicMock()
        lambda_client.update_function_configuration.return_value = {"FunctionArn": "arn:fn"}
        account.client.side_effect = lambda service: {"iam": iam, "lambda": lambda_client}[service]

        assert deploy_handler(account, "redis_data_loader", "loader", {}, {}) == "arn:fn"
        iam.get_role.assert_called_once_with(RoleName="loader-role")


class TestInvokeFunction:
    def _client(self, payload, function_error=None):
        client = MagicMock()
        response = {"Payload": io.BytesIO(json.dumps(payload).encode())}
        if function_error:
            response["FunctionError"] = function_error
        client.invoke.return_value = response
        return client

    def test_json_body_decoded(self):
        client = self._client({"statusCode": 200, "body": json.dumps({"summary": {"migration_success": True}})})
        result = invoke_function(client, "fn")
        assert result["statusCode"] == 200
        assert result["body"]["summary"]["migration_success"] is True
        assert result["function_error"] is None

    def test_plain_string_body(self):
        result = invoke_function(self._client({"statusCode": 500, "body": "not json"}), "fn")
        assert result["body"] == "not json"

    def test_function_error_reported(self):
        result = invoke_function(self._client({"errorMessage": "boom"}, "Unhandled"), "fn")
        assert result["function_error"] == "Unhandled"
