#!/usr/bin/env python3
"""
Migration Validation

Deploys the validator Lambda into the target VPC (subnets and security group
from the target infrastructure stack), invokes it against the migrated Redis
endpoint and reports the key count against the configured threshold.

The exit code mirrors the validator's migration_success flag.

Usage:
    python scripts/validate_migration.py [config] [--endpoint HOST[:PORT]] [--no-deploy]
"""

import argparse
import datetime
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

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
from sslib.config import DEFAULT_CONFIG_FILE, MigrationConfig, load_config
from sslib.errors import MigrationToolkitError, MissingResourceError, ProviderFailureError
from sslib.lambdas import deploy_handler, invoke_function, split_output_list
from sslib.stacks import (
    OUTPUT_REDIS_ENDPOINT,
    OUTPUT_REDIS_PORT,
    OUTPUT_SECURITY_GROUP,
    OUTPUT_SUBNET_IDS,
    get_stack_outputs,
)
from sslib.tagging import COMPONENT_VALIDATION, component_tags

SCRIPT_NAME = "validate-migration"
VALIDATOR_FUNCTION_NAME = "redis-migration-validator"
DEFAULT_REDIS_PORT = "6379"


def resolve_endpoint(outputs: Dict[str, str], override: Optional[str] = None) -> Tuple[str, str]:
    """
    Return (host, port) from --endpoint or the target stack outputs.

    Raises:
        MissingResourceError: when neither provides a host
    """
    if override:
        host, _, port = override.partition(":")
        return host, port or DEFAULT_REDIS_PORT
    host = outputs.get(OUTPUT_REDIS_ENDPOINT, "")
    if not host:
        raise MissingResourceError(f"Could not find target Redis endpoint in stack outputs ({OUTPUT_REDIS_ENDPOINT})")
    return host, outputs.get(OUTPUT_REDIS_PORT) or DEFAULT_REDIS_PORT


def deploy_validator(target: AwsAccount, config: MigrationConfig, outputs: Dict[str, str],
                     host: str, port: str) -> str:
    subnet_ids = split_output_list(outputs.get(OUTPUT_SUBNET_IDS, ""))
    security_group = outputs.get(OUTPUT_SECURITY_GROUP, "")
    if not subnet_ids or not security_group:
        raise MissingResourceError(
            f"Target stack {config.target.infrastructure_stack_name} must export "
            f"{OUTPUT_SUBNET_IDS} and {OUTPUT_SECURITY_GROUP} to place the validator in the VPC"
        )

    utils.log_action(f"Deploying validator Lambda {VALIDATOR_FUNCTION_NAME}")
    return deploy_handler(
        target,
        "redis_validator",
        VALIDATOR_FUNCTION_NAME,
        environment={
            "REDIS_HOST": host,
            "REDIS_PORT": str(port),
            "EXPECTED_MINIMUM_KEYS": str(config.validation.expected_minimum_keys),
        },
        tags=component_tags(COMPONENT_VALIDATION),
        subnet_ids=subnet_ids,
        security_group_ids=[security_group],
    )


def summarize(result: Dict[str, Any]) -> bool:
    """
    Log the validator response.

    Raises:
        ProviderFailureError: the function errored or returned a non-200 status
    """
    body = result.get("body")
    if result.get("function_error") or result.get("statusCode") != 200 or not isinstance(body, dict):
        raise ProviderFailureError(f"Validator returned an error: {json.dumps(body) if body else result}")

    summary = body.get("summary", {})
    utils.log_info(f"Redis connection: {body.get('redis_connection')} (PING: {body.get('ping_response')})")
    utils.log_info(f"Keys found: {summary.get('total_keys_migrated')} "
                   f"(expected minimum: {summary.get('expected_minimum')})")
    sample = body.get("actual_keys_sample") or []
    if sample:
        utils.log_info(f"Sample keys: {', '.join(sample)}")
    utils.log_info(f"Connection test: {summary.get('connection_test')}")
    utils.log_info(f"Data validation: {summary.get('data_validation')}")
    return bool(summary.get("migration_success"))


def save_result(body: Any) -> Path:
    path = utils.get_output_filepath(f"validation-result-{datetime.datetime.now().strftime('%Y%m%d-%H%M%S')}.json")
    path.write_text(json.dumps(body, indent=2), encoding="utf-8")
    return path


def run_validation(config: MigrationConfig, endpoint: Optional[str] = None, deploy: bool = True,
                   target: Optional[AwsAccount] = None) -> bool:
    target = target or AwsAccount("target", config.target.profile, config.target.region, config.aws_sdk_config)
    outputs = get_stack_outputs(target.client("cloudformation"), config.target.infrastructure_stack_name)
    host, port = resolve_endpoint(outputs, endpoint)
    utils.log_info(f"Target Redis endpoint: {host}:{port}")

    if deploy:
        deploy_validator(target, config, outputs, host, port)
    else:
        utils.log_info(f"Skipping deployment; invoking existing function {VALIDATOR_FUNCTION_NAME}")

    utils.log_action("Invoking validator")
    result = invoke_function(target.client("lambda"), VALIDATOR_FUNCTION_NAME)
    success = summarize(result)
    utils.log_info(f"Validator response saved to {save_result(result.get('body'))}")

    if success:
        utils.log_success("Migration validation PASSED")
    else:
        utils.log_error("Migration validation FAILED - insufficient keys in target cluster")
    return success


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate the migrated Redis data with a Lambda in the target VPC")
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE,
                        help=f"Migration configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--endpoint", help="Target Redis HOST[:PORT] (default: target stack outputs)")
    parser.add_argument("--no-deploy", action="store_true",
                        help="Invoke the already deployed validator without redeploying it")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    utils.setup_logging(SCRIPT_NAME)
    start_time = datetime.datetime.now()
    utils.log_script_start(SCRIPT_NAME, "ElastiCache migration validation")

    try:
        utils.check_prerequisites(args.config)
        config = load_config(args.config, scope="validation")
        return 0 if run_validation(config, args.endpoint, deploy=not args.no_deploy) else 1

    except MigrationToolkitError as e:
        utils.log_error("Validation failed", e)
    except (ClientError, NoCredentialsError, WaiterError, BotoCoreError) as e:
        utils.log_error(utils.describe_aws_error("Validation failed", e))
    except KeyboardInterrupt:
        utils.log_warning("Validation interrupted by user")
    finally:
        utils.log_script_end(SCRIPT_NAME, start_time)
    return 1


if __name__ == "__main__":
    sys.exit(main())
