#!/usr/bin/env python3
"""
Load Test Data

Seeds the source Redis cluster with the known 44-key data set so that the
post-migration validation has something to count. The loader runs as a Lambda
in the source VPC because the cluster is not reachable from outside it.

Usage:
    python scripts/load_test_data.py [config]
"""

import argparse
import datetime
import sys
from pathlib import Path
from typing import List, Optional

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
from sslib.tagging import COMPONENT_DATA_LOADER, component_tags

SCRIPT_NAME = "load-test-data"
LOADER_FUNCTION_NAME = "redis-migration-data-loader"


def run_loader(config: MigrationConfig, source: Optional[AwsAccount] = None) -> int:
    """
    Deploy and invoke the data loader.

    Returns:
        int: number of keys the loader reported as written
    """
    source = source or AwsAccount("source", config.source.profile, config.source.region, config.aws_sdk_config)
    stack_name = config.source.infrastructure_stack_name
    outputs = get_stack_outputs(source.client("cloudformation"), stack_name)

    endpoint = outputs.get(OUTPUT_REDIS_ENDPOINT, "")
    subnet_ids = split_output_list(outputs.get(OUTPUT_SUBNET_IDS, ""))
    security_group = outputs.get(OUTPUT_SECURITY_GROUP, "")
    if not endpoint or not subnet_ids or not security_group:
        raise MissingResourceError(
            f"Source stack {stack_name} must export {OUTPUT_REDIS_ENDPOINT}, {OUTPUT_SUBNET_IDS} "
            f"and {OUTPUT_SECURITY_GROUP}"
        )

    utils.log_action(f"Deploying data loader Lambda {LOADER_FUNCTION_NAME}")
    deploy_handler(
        source,
        "redis_data_loader",
        LOADER_FUNCTION_NAME,
        environment={"REDIS_ENDPOINT": endpoint, "REDIS_PORT": outputs.get(OUTPUT_REDIS_PORT) or "6379"},
        tags=component_tags(COMPONENT_DATA_LOADER),
        subnet_ids=subnet_ids,
        security_group_ids=[security_group],
    )

    utils.log_action("Invoking data loader")
    result = invoke_function(source.client("lambda"), LOADER_FUNCTION_NAME)
    body = result.get("body")
    if result.get("function_error") or result.get("statusCode") != 200 or not isinstance(body, dict):
        raise ProviderFailureError(f"Data loader failed: {body or result}")

    utils.log_success(f"Loaded {body.get('keys_loaded')} keys into {body.get('redis_endpoint')}")
    utils.log_info(f"Source database size: {body.get('final_db_size')}")
    return int(body.get("keys_loaded") or 0)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the source Redis cluster with test data")
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE,
                        help=f"Migration configuration file (default: {DEFAULT_CONFIG_FILE})")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    utils.setup_logging(SCRIPT_NAME)
    start_time = datetime.datetime.now()
    utils.log_script_start(SCRIPT_NAME, "Load test data into the source Redis cluster")

    try:
        utils.check_prerequisites(args.config)
        config = load_config(args.config, scope="loader")
        run_loader(config)
        return 0

    except MigrationToolkitError as e:
        utils.log_error("Data load failed", e)
    except (ClientError, NoCredentialsError, WaiterError, BotoCoreError) as e:
        utils.log_error(utils.describe_aws_error("Data load failed", e))
    except KeyboardInterrupt:
        utils.log_warning("Data load interrupted by user")
    finally:
        utils.log_script_end(SCRIPT_NAME, start_time)
    return 1


if __name__ == "__main__":
    sys.exit(main())
