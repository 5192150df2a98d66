"""
sslib.lambdas — Package, deploy and invoke the single-file helper Lambdas.

The validator and data-loader handlers live in lambdas/ as plain modules.
They are zipped in memory as ``index.py`` and deployed with an execution role;
both the role and the function carry the toolkit's component tags so cleanup
can find them by tag.
"""

import io
import json
import logging
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from botocore.exceptions import ClientError

from sslib.polling import poll_until
from sslib.tagging import as_tag_list

logger = logging.getLogger(__name__)

LAMBDA_RUNTIME = "python3.12"
LAMBDA_HANDLER = "index.lambda_handler"
LAMBDA_TIMEOUT = 300

LAMBDAS_DIR = Path(__file__).parent.parent / "lambdas"

_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}


def vpc_execution_policy_arn(partition: str = "aws") -> str:
    return f"arn:{partition}:iam::aws:policy/service-role/AWSLambdaVPCAccessExecutionRole"


def build_deployment_package(source_file: Path) -> bytes:
    """
    Zip a single handler module as index.py.

    Args:
        source_file: Path to the handler module

    Returns:
        bytes: zip archive contents
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("index.py", Path(source_file).read_text(encoding="utf-8"))
    return buffer.getvalue()


def ensure_execution_role(iam, role_name: str, tags: Mapping[str, str], partition: str = "aws") -> str:
    """
    Return the ARN of the Lambda execution role, creating it if needed.

    The role trusts lambda.amazonaws.com and has the managed VPC access policy
    attached (ENI management plus CloudWatch Logs).
    """
    try:
        arn = iam.get_role(RoleName=role_name)["Role"]["Arn"]
        logger.info("Using existing IAM role %s", role_name)
        return arn
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") != "NoSuchEntity":
            raise

    logger.info("Creating IAM role %s", role_name)
    arn = iam.create_role(
        RoleName=role_name,
        AssumeRolePolicyDocument=json.dumps(_TRUST_POLICY),
        Description="Execution role for ElastiCache migration helper Lambda",
        Tags=as_tag_list(tags),
    )["Role"]["Arn"]
    iam.attach_role_policy(RoleName=role_name, PolicyArn=vpc_execution_policy_arn(partition))
    iam.get_waiter("role_exists").wait(RoleName=role_name)
    return arn


def _function_exists(lambda_client, function_name: str) -> bool:
    try:
        lambda_client.get_function(FunctionName=function_name)
        return True
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
            return False
        raise


def deploy_function(
    lambda_client,
    function_name: str,
    role_arn: str,
    package: bytes,
    environment: Mapping[str, str],
    tags: Mapping[str, str],
    subnet_ids: Optional[List[str]] = None,
    security_group_ids: Optional[List[str]] = None,
    sleep: Callable[[float], Any] = None,
    role_propagation_attempts: int = 6,
) -> str:
    """
    Create or update a Lambda function and wait until it is active.

    A freshly created IAM role is not immediately assumable by Lambda, so
    creation is retried (bounded) while Lambda reports InvalidParameterValue.

    Returns:
        str: the function ARN
    """
    vpc_config = {}
    if subnet_ids:
        vpc_config = {"SubnetIds": list(subnet_ids), "SecurityGroupIds": list(security_group_ids or [])}

    if _function_exists(lambda_client, function_name):
        logger.info("Updating existing Lambda function %s", function_name)
        lambda_client.update_function_code(FunctionName=function_name, ZipFile=package)
        lambda_client.get_waiter("function_updated_v2").wait(FunctionName=function_name)
        response = lambda_client.update_function_configuration(
            FunctionName=function_name,
            Role=role_arn,
            Environment={"Variables": dict(environment)},
            VpcConfig=vpc_config or {"SubnetIds": [], "SecurityGroupIds": []},
        )
        lambda_client.get_waiter("function_updated_v2").wait(FunctionName=function_name)
        return response["FunctionArn"]

    def try_create() -> Optional[Dict[str, Any]]:
        kwargs = dict(
            FunctionName=function_name,
            Runtime=LAMBDA_RUNTIME,
            Role=role_arn,
            Handler=LAMBDA_HANDLER,
            Code={"ZipFile": package},
            Timeout=LAMBDA_TIMEOUT,
            Environment={"Variables": dict(environment)},
            Tags=dict(tags),
        )
        if vpc_config:
            kwargs["VpcConfig"] = vpc_config
        try:
            return lambda_client.create_function(**kwargs)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "InvalidParameterValueException":
                logger.debug("Role not yet assumable by Lambda: %s", e)
                return None
            raise

    logger.info("Creating Lambda function %s", function_name)
    poll_kwargs = {"sleep": sleep} if sleep is not None else {}
    result = poll_until(
        try_create,
        lambda response: response is not None,
        f"IAM role propagation for {function_name}",
        interval=10,
        max_attempts=role_propagation_attempts,
        on_pending=lambda *_: logger.info("Waiting for IAM role to propagate..."),
        **poll_kwargs,
    )
    lambda_client.get_waiter("function_active_v2").wait(FunctionName=function_name)
    return result.value["FunctionArn"]


def invoke_function(lambda_client, function_name: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Invoke a function synchronously and decode its response.

    Returns:
        dict: {'statusCode': int, 'body': parsed body (dict when JSON), 'function_error': str|None}
    """
    response = lambda_client.invoke(
        FunctionName=function_name,
        InvocationType="RequestResponse",
        Payload=json.dumps(payload or {}).encode("utf-8"),
    )
    raw = response["Payload"].read()
    decoded = json.loads(raw) if raw else {}

    body = decoded.get("body") if isinstance(decoded, dict) else decoded
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            pass

    return {
        "statusCode": decoded.get("statusCode") if isinstance(decoded, dict) else None,
        "body": body,
        "function_error": response.get("FunctionError"),
    }


def deploy_handler(
    account,
    handler_module: str,
    function_name: str,
    environment: Mapping[str, str],
    tags: Mapping[str, str],
    subnet_ids: Optional[List[str]] = None,
    security_group_ids: Optional[List[str]] = None,
    sleep: Callable[[float], Any] = None,
) -> str:
    """
    Deploy ``lambdas/<handler_module>.py`` into an account with its own role.

    The role is named ``<function_name>-role`` and carries the same tags as the
    function.

    Returns:
        str: the function ARN
    """
    role_arn = ensure_execution_role(account.client("iam"), f"{function_name}-role", tags, account.partition)
    package = build_deployment_package(LAMBDAS_DIR / f"{handler_module}.py")
    return deploy_function(
        account.client("lambda"),
        function_name,
        role_arn,
        package,
        environment,
        tags,
        subnet_ids=subnet_ids,
        security_group_ids=security_group_ids,
        sleep=sleep,
    )


def split_output_list(value: str) -> List[str]:
    """Stack outputs such as SubnetIds are comma-joined strings."""
    return [item.strip() for item in (value or "").split(",") if item.strip()]
