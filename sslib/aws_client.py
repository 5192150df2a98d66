"""
sslib.aws_client — Profile-aware boto3 session and client factory.

Each side of the migration (source and target account) is represented by an
AwsAccount handle built from a named credential profile and a region. Clients
are created with the standard retry/timeout configuration and automatic FIPS
endpoint injection for GovCloud regions.

Zero dependency on utils.py.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.config import Config

logger = logging.getLogger(__name__)

_DEFAULT_RETRIES = {"max_attempts": 5, "mode": "adaptive"}


# ---------------------------------------------------------------------------
# Region validation
# ---------------------------------------------------------------------------


def is_aws_region(region: str) -> bool:
    """
    Check if a region is a syntactically valid AWS region.

    Args:
        region: AWS region name

    Returns:
        bool: True if valid AWS region, False otherwise
    """
    # Pattern supports: us-east-1, us-gov-west-1, ap-southeast-2, etc.
    pattern = r"^[a-z]{2}(-gov)?-[a-z]+-[0-9]+$"
    return bool(re.match(pattern, region or ""))


def validate_aws_region(region: str) -> bool:
    """
    Validate a region name and log a helpful error if it is malformed.

    Args:
        region: AWS region name

    Returns:
        bool: True if valid, False otherwise
    """
    if not is_aws_region(region):
        logger.error("Invalid AWS region: %s", region)
        logger.error("Valid AWS regions include: us-east-1, us-west-2, eu-west-1, us-gov-west-1")
        return False
    return True


def detect_partition(region_name: Optional[str]) -> str:
    """
    Detect the AWS partition from a region name.

    Returns:
        str: 'aws' or 'aws-us-gov'
    """
    if region_name and region_name.startswith("us-gov"):
        return "aws-us-gov"
    return "aws"


# ---------------------------------------------------------------------------
# Session and client factory
# ---------------------------------------------------------------------------


def get_aws_session(profile_name: Optional[str] = None, region_name: Optional[str] = None) -> boto3.Session:
    """
    Create a boto3 session for a named profile and region.

    Args:
        profile_name: Credential profile (None = default credential chain)
        region_name: AWS region (None = profile default)

    Returns:
        boto3.Session: Configured session
    """
    return boto3.Session(profile_name=profile_name or None, region_name=region_name or None)


def build_client_config(sdk_config: Optional[Dict[str, Any]] = None) -> Config:
    """
    Build the botocore Config used for every client.

    Args:
        sdk_config: The ``aws_sdk_config`` section of the migration config

    Returns:
        botocore.config.Config: retries, connect and read timeouts
    """
    sdk_config = sdk_config or {}
    return Config(
        retries=sdk_config.get("retries", _DEFAULT_RETRIES),
        connect_timeout=sdk_config.get("connect_timeout", 10),
        read_timeout=sdk_config.get("read_timeout", 60),
    )


def get_boto3_client(
    service: str,
    session: Optional[boto3.Session] = None,
    region_name: Optional[str] = None,
    sdk_config: Optional[Dict[str, Any]] = None,
    **kwargs,
):
    """
    Create a boto3 client with standard configuration including retries.

    Automatically injects ``use_fips_endpoint=True`` for GovCloud regions
    (``us-gov-west-1``, ``us-gov-east-1``). This is a security-critical property
    that must survive any refactoring.

    Args:
        service: AWS service name (e.g., 'elasticache', 'cloudformation', 's3')
        session: Session to create the client from (default: a fresh default session)
        region_name: AWS region name (optional, defaults to the session's region)
        sdk_config: The ``aws_sdk_config`` configuration section
        **kwargs: Additional arguments to pass to client creation

    Returns:
        boto3.client: Configured boto3 client with retry logic
    """
    if session is None:
        session = get_aws_session(region_name=region_name)

    region = region_name or getattr(session, "region_name", None)

    # GovCloud requires FIPS endpoints
    if region and region.startswith("us-gov-") and "use_fips_endpoint" not in kwargs:
        kwargs["use_fips_endpoint"] = True

    if region_name:
        kwargs["region_name"] = region_name

    return session.client(service, config=build_client_config(sdk_config), **kwargs)


class AwsAccount:
    """
    One AWS account/region pair reached through a named credential profile.

    Clients are created lazily and cached per service so every step of a run
    shares the same client (and therefore the same retry budget).
    """

    def __init__(
        self,
        label: str,
        profile: Optional[str],
        region: str,
        sdk_config: Optional[Dict[str, Any]] = None,
        session: Optional[boto3.Session] = None,
    ):
        self.label = label
        self.profile = profile
        self.region = region
        self.sdk_config = sdk_config or {}
        self._session = session
        self._clients: Dict[str, Any] = {}
        self._account_id: Optional[str] = None

    def __repr__(self) -> str:
        return f"AwsAccount({self.label!r}, profile={self.profile!r}, region={self.region!r})"

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            self._session = get_aws_session(self.profile, self.region)
        return self._session

    def client(self, service: str):
        """Return the cached client for ``service`` in this account's region."""
        if service not in self._clients:
            self._clients[service] = get_boto3_client(
                service, session=self.session, region_name=self.region, sdk_config=self.sdk_config
            )
        return self._clients[service]

    @property
    def account_id(self) -> str:
        """The 12-digit account ID behind the profile (one STS call per handle)."""
        if self._account_id is None:
            self._account_id = self.client("sts").get_caller_identity()["Account"]
        return self._account_id

    @property
    def partition(self) -> str:
        return detect_partition(self.region)


# ---------------------------------------------------------------------------
# Credential validation
# ---------------------------------------------------------------------------


def validate_aws_credentials(account: AwsAccount) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate that an account's profile resolves to working credentials.

    Returns:
        tuple: (is_valid, account_id, error_message)
    """
    try:
        return True, account.account_id, None
    except Exception as e:
        return False, None, str(e)


def mask_account_id(account_id: str) -> str:
    """Return '...NNNN' for safe log output; short values are returned unchanged."""
    if not account_id or len(account_id) < 4:
        return account_id
    return f"...{account_id[-4:]}"
