#!/usr/bin/env python3
"""
===========================
= REDIS MIGRATION TOOLKIT =
===========================

Title: Migration Toolkit Utilities Module
Version: v1.0.0
Date: OCT-18-2026

Description:
Shared utility functions for the ElastiCache Redis cross-account migration
entry points. This module provides logging setup (colour console plus
append-only log file), standardized AWS error handling, prerequisite checks,
confirmation prompts, and output-directory helpers.

Features:
- Severity-tagged, timestamped log lines mirrored to console and file
- Decorator and context manager for consistent botocore error reporting
- Dry-run plan export to Excel via pandas/openpyxl
"""

import os
import sys
import datetime
import importlib.util
import logging
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Dict, List, Optional, Any, Union, Callable, TypeVar, Iterable

from sslib.errors import PrerequisiteError

# Global logger instance
logger = None
# Tracks whether setup_logging() has been explicitly called
_logging_configured = False

LOGGER_NAME = 'redis_migration'

# ANSI colour per severity tag
_TAG_COLORS = {
    'DEBUG': '\033[0;37m',
    'INFO': '\033[0;34m',
    'SUCCESS': '\033[0;32m',
    'WARNING': '\033[1;33m',
    'ERROR': '\033[0;31m',
    'CRITICAL': '\033[0;31m',
    'ACTION': '\033[0;36m',
    'PHASE': '\033[0;35m',
}
_COLOR_RESET = '\033[0m'

# Packages every entry point needs at import time (import name -> pip name)
REQUIRED_PACKAGES = {'boto3': 'boto3', 'botocore': 'botocore', 'yaml': 'PyYAML'}


class _TagFilter(logging.Filter):
    """Give every record a ``tag`` attribute (defaults to the level name)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, 'tag', None):
            record.tag = record.levelname
        return True


class ColorFormatter(logging.Formatter):
    """Console formatter: ``[timestamp] TAG: message`` with the tag coloured."""

    def __init__(self, use_color: bool = True):
        super().__init__('[%(asctime)s] %(tag)s: %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        tag = getattr(record, 'tag', record.levelname)
        if self.use_color and tag in _TAG_COLORS:
            record.tag = f"{_TAG_COLORS[tag]}{tag}{_COLOR_RESET}"
        try:
            return super().format(record)
        finally:
            record.tag = tag


def _cleanup_old_logs(logs_dir: Path, log_retention_days: int = 14) -> None:
    """
    Remove log files older than log_retention_days from the logs directory.

    Args:
        logs_dir: Path to the logs directory
        log_retention_days: Number of days to retain log files (default: 14)
    """
    cutoff = datetime.datetime.now() - datetime.timedelta(days=log_retention_days)
    cutoff_timestamp = cutoff.timestamp()
    removed = 0
    for log_file in logs_dir.glob("*.log"):
        try:
            if log_file.stat().st_mtime < cutoff_timestamp:
                log_file.unlink()
                removed += 1
        except OSError:
            continue  # Skip files we cannot stat or remove
    if removed:
        logging.getLogger(LOGGER_NAME).debug(
            f"Cleaned up {removed} log file(s) older than {log_retention_days} days"
        )


def setup_logging(
    script_name: str = "redis-migration",
    log_to_file: bool = True,
    console_level: int = logging.INFO,
    logs_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Setup logging for a toolkit entry point with both console and file output.

    The toolkit logger and the ``sslib`` library logger share the same
    handlers so library log lines land in the same console and file.

    Args:
        script_name (str): Name of the script for log file naming
        log_to_file (bool): Whether to log to file in addition to console
        console_level (int): Minimum level shown on the console
        logs_dir (Path): Directory for log files (default: <project>/logs)

    Returns:
        logging.Logger: Configured logger instance
    """
    global logger, _logging_configured

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers = []
    logger.propagate = False

    lib_logger = logging.getLogger('sslib')
    lib_logger.setLevel(logging.DEBUG)
    lib_logger.handlers = []
    lib_logger.propagate = False

    tag_filter = _TagFilter()

    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(tag)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler (always enabled)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.addFilter(tag_filter)
    console_handler.setFormatter(ColorFormatter(use_color=sys.stdout.isatty()))
    logger.addHandler(console_handler)
    lib_logger.addHandler(console_handler)

    # File handler (if enabled)
    if log_to_file:
        try:
            logs_dir = Path(logs_dir) if logs_dir else get_project_root() / "logs"
            logs_dir.mkdir(parents=True, exist_ok=True)

            _cleanup_old_logs(logs_dir)

            # Timestamp for log filename: MM.DD.YYYY-HHMM
            timestamp = datetime.datetime.now().strftime("%m.%d.%Y-%H%M")
            log_filepath = logs_dir / f"logs-{script_name}-{timestamp}.log"

            # Append-only so re-runs within the same minute keep earlier lines
            file_handler = logging.FileHandler(log_filepath, mode='a', encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.addFilter(tag_filter)
            file_handler.setFormatter(file_formatter)
            logger.addHandler(file_handler)
            lib_logger.addHandler(file_handler)

            logger.info(f"Logging initialized - Log file: {log_filepath}")
            logger.info(f"Script: {script_name}")
            logger.info("=" * 80)

        except OSError as e:
            # If file logging fails, continue with console only
            logger.error(f"Failed to setup file logging: {e}")
            logger.warning("Continuing with console logging only")

    _logging_configured = True
    return logger


def get_logger() -> logging.Logger:
    """
    Get the current logger instance.
    If setup_logging() has not yet been called, returns a logger with a
    NullHandler so that library usage does not emit spurious output.

    Returns:
        logging.Logger: Logger instance
    """
    global logger
    if logger is None:
        _null_logger = logging.getLogger(LOGGER_NAME)
        if not _null_logger.handlers:
            _null_logger.addHandler(logging.NullHandler())
        return _null_logger
    return logger

# Do NOT call setup_logging() at module import time.
# Entry points must call utils.setup_logging() explicitly to activate logging.


def log_error(error_message: str, error_obj: Optional[Exception] = None) -> None:
    """
    Log an error message to both console and file.

    Args:
        error_message: The error message to display
        error_obj: Optional exception object
    """
    current_logger = get_logger()
    if error_obj:
        current_logger.error(f"{error_message}: {str(error_obj)}")
        # Stack trace goes to the file handler only
        current_logger.debug(f"Exception details: {error_obj}", exc_info=error_obj)
    else:
        current_logger.error(error_message)

def log_warning(warning_message: str) -> None:
    get_logger().warning(warning_message)

def log_info(info_message: str) -> None:
    get_logger().info(info_message)

def log_debug(debug_message: str) -> None:
    """Log a debug message (file only, not console)."""
    get_logger().debug(debug_message)

def log_success(success_message: str) -> None:
    get_logger().info(success_message, extra={'tag': 'SUCCESS'})

def log_action(action_message: str) -> None:
    """Log an action that changes (or, in dry-run, would change) AWS resources."""
    get_logger().info(action_message, extra={'tag': 'ACTION'})

def log_phase(phase_message: str) -> None:
    get_logger().info(phase_message, extra={'tag': 'PHASE'})

def log_script_start(script_name: str, description: str = "") -> None:
    """
    Log the start of a script execution with standardized format.

    Args:
        script_name: Name of the script being executed
        description: Optional description of the script's purpose
    """
    current_logger = get_logger()
    current_logger.info("=" * 80)
    current_logger.info(f"SCRIPT START: {script_name}")
    if description:
        current_logger.info(f"DESCRIPTION: {description}")
    current_logger.info(f"START TIME: {get_current_timestamp()}")
    current_logger.info("=" * 80)

def log_script_end(script_name: str, start_time: Optional[datetime.datetime] = None) -> None:
    """
    Log the end of a script execution with standardized format.

    Args:
        script_name: Name of the script that was executed
        start_time: Optional start time to calculate duration
    """
    current_logger = get_logger()
    end_time = datetime.datetime.now()

    current_logger.info("=" * 80)
    current_logger.info(f"SCRIPT END: {script_name}")
    current_logger.info(f"END TIME: {end_time.strftime('%Y-%m-%d %H:%M:%S')}")

    if start_time:
        current_logger.info(f"DURATION: {end_time - start_time}")

    log_file = get_current_log_file()
    if log_file:
        current_logger.info(f"LOG FILE: {log_file}")

    current_logger.info("=" * 80)

def log_section(section_name: str) -> None:
    current_logger = get_logger()
    current_logger.info("-" * 50)
    current_logger.info(f"SECTION: {section_name}")
    current_logger.info("-" * 50)

def log_aws_operation(operation_name: str, service: str, region: Optional[str] = None, details: str = "") -> None:
    """
    Log AWS API operations for audit trail.

    Args:
        operation_name: Name of the AWS operation (e.g., create_snapshot)
        service: AWS service name (e.g., ElastiCache)
        region: AWS region (optional)
        details: Additional details about the operation
    """
    region_info = f" in {region}" if region else ""
    details_info = f" - {details}" if details else ""
    get_logger().debug(f"AWS API: {service}.{operation_name}{region_info}{details_info}")

def get_current_log_file() -> Optional[str]:
    for handler in get_logger().handlers:
        if isinstance(handler, logging.FileHandler):
            return handler.baseFilename
    return None


# =============================================================================
# PROMPTS AND ENVIRONMENT
# =============================================================================


def is_auto_run() -> bool:
    """
    Check if the toolkit is running in non-interactive automation mode.

    Returns:
        bool: True if REDIS_MIGRATION_AUTO_RUN is set to 1/true/yes
    """
    return os.environ.get("REDIS_MIGRATION_AUTO_RUN", "").lower() in ("1", "true", "yes")


def prompt_for_confirmation(message: str = "Do you want to continue?", strict: bool = True) -> bool:
    """
    Prompt the user for confirmation.

    Args:
        message: Message to display
        strict: Require the full word 'yes' (destructive operations); otherwise y/yes

    Returns:
        bool: True if confirmed, False otherwise
    """
    if strict:
        response = input(f"{message} (yes/no): ").strip().lower()
        return response == 'yes'

    response = input(f"{message} (y/N): ").strip().lower()
    return response in ['y', 'yes']


def format_bytes(size_bytes: Union[int, float]) -> str:
    """
    Format bytes to human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        str: Formatted size string (e.g., "1.23 GB")
    """
    if size_bytes == 0:
        return "0 B"

    size_names = ("B", "KB", "MB", "GB", "TB", "PB")
    i = 0

    while size_bytes >= 1024 and i < len(size_names) - 1:
        size_bytes /= 1024.0
        i += 1

    return f"{size_bytes:.2f} {size_names[i]}"

def get_current_timestamp() -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


# =============================================================================
# PATHS
# =============================================================================


def get_project_root() -> Path:
    """
    Get the root directory of the toolkit.

    Anchored to this file (utils.py) rather than sys.argv[0] so the path is
    correct regardless of how Python was invoked (pytest, scripts/, etc.).
    """
    return Path(__file__).absolute().parent

def get_output_dir() -> Path:
    """
    Get the path to the output directory and create it if it doesn't exist.

    Returns:
        Path: Path to the output directory
    """
    output_dir = get_project_root() / "output"
    output_dir.mkdir(exist_ok=True)
    return output_dir

def get_output_filepath(filename: str) -> Path:
    return get_output_dir() / filename

def resolve_project_path(path: Union[str, Path]) -> Path:
    """Resolve a relative path against the CWD first, then the project root."""
    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return candidate
    return get_project_root() / candidate

def create_export_filename(resource_type: str, suffix: str = "", current_date: Optional[str] = None) -> str:
    """
    Create a standardized filename for an exported plan.

    Args:
        resource_type: What is being exported (e.g., "cleanup-migration")
        suffix: Optional suffix for the filename (e.g., "dry-run")
        current_date: Date to use in the filename (defaults to today)

    Returns:
        str: Unique filename in the output directory
    """
    if not current_date:
        current_date = datetime.datetime.now().strftime("%m.%d.%Y")

    if suffix:
        base_filename = f"{resource_type}-{suffix}-{current_date}.xlsx"
    else:
        base_filename = f"{resource_type}-{current_date}.xlsx"

    # Same-day overwrite protection: append -v2, -v3, etc. until the name is unique
    output_dir = get_output_dir()
    candidate = base_filename
    version = 2
    while (output_dir / candidate).exists():
        stem = base_filename[: -len(".xlsx")]
        candidate = f"{stem}-v{version}.xlsx"
        version += 1

    return candidate


def save_dataframe_to_excel(df, filename: str, sheet_name: str = "Data", auto_adjust_columns: bool = True) -> Optional[str]:
    """
    Save a pandas DataFrame to an Excel file in the output directory.

    Args:
        df: pandas DataFrame to save
        filename: Name of the file to save
        sheet_name: Name of the sheet in Excel
        auto_adjust_columns: Whether to auto-adjust column widths

    Returns:
        str: Full path to the saved file
    """
    import pandas as pd
    from openpyxl.utils import get_column_letter

    output_path = get_output_filepath(filename)

    try:
        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name=sheet_name, index=False)

            # Auto-adjust column widths (skip if DataFrame is empty)
            if auto_adjust_columns and not df.empty:
                worksheet = writer.sheets[sheet_name]
                for i, column in enumerate(df.columns):
                    column_width = max(df[column].astype(str).map(len).max(), len(column)) + 2
                    column_width = min(column_width, 50)
                    worksheet.column_dimensions[get_column_letter(i + 1)].width = column_width

        get_logger().info(f"Data successfully exported to: {output_path}")
        return str(output_path)

    except (OSError, ValueError) as e:
        get_logger().error(f"Error saving Excel file: {e}")

        # Try CSV as fallback
        try:
            csv_path = get_output_filepath(filename.replace('.xlsx', '.csv'))
            df.to_csv(csv_path, index=False)
            get_logger().info(f"Saved as CSV instead: {csv_path}")
            return str(csv_path)
        except OSError as csv_e:
            get_logger().error(f"Error saving CSV file: {csv_e}")
            return None


def plan_action(plan: List[Dict[str, Any]], account: str, action: str, resource_type: str,
                resource: str, detail: str = "") -> None:
    """Log a dry-run action and record it in ``plan`` for export_action_plan()."""
    log_action(f"[DRY RUN] Would {action.lower()} {resource_type} {resource}")
    plan.append({
        'Account': account,
        'Action': action,
        'ResourceType': resource_type,
        'Resource': resource,
        'Detail': detail,
    })


def export_action_plan(actions: Iterable[Dict[str, Any]], resource_type: str) -> Optional[str]:
    """
    Write the list of planned (dry-run) actions to an Excel file.

    Args:
        actions: Dicts with at least 'Account', 'Action', 'ResourceType', 'Resource'
        resource_type: Prefix for the output filename

    Returns:
        str: Path to the saved file, or None when there was nothing to write
    """
    import pandas as pd

    rows = list(actions)
    if not rows:
        log_info("No planned actions to export")
        return None

    df = pd.DataFrame(rows, columns=['Account', 'Action', 'ResourceType', 'Resource', 'Detail'])
    df = df.fillna('N/A')
    return save_dataframe_to_excel(df, create_export_filename(resource_type, "dry-run"), sheet_name="Planned Actions")


# =============================================================================
# PREREQUISITES
# =============================================================================


def check_prerequisites(
    config_path: Optional[Union[str, Path]] = None,
    packages: Optional[Dict[str, str]] = None,
) -> None:
    """
    Verify required packages are importable and the configuration file exists.

    Runs before any AWS call is made.

    Args:
        config_path: Configuration file that must exist (skipped when None)
        packages: {import_name: pip_name} to check (default: REQUIRED_PACKAGES)

    Raises:
        PrerequisiteError: listing every missing package, or the missing config file
    """
    log_info("Checking prerequisites...")
    packages = REQUIRED_PACKAGES if packages is None else packages

    missing = [pip_name for import_name, pip_name in packages.items()
               if importlib.util.find_spec(import_name) is None]
    if missing:
        raise PrerequisiteError(
            f"Missing required packages: {', '.join(missing)}. "
            f"Install them with: pip install {' '.join(missing)}"
        )

    if config_path is not None and not Path(config_path).is_file():
        raise PrerequisiteError(f"Configuration file not found: {config_path}")

    log_success("Prerequisites check passed")


def verify_account_credentials(accounts: List[Any]) -> None:
    """
    Resolve each account's profile through STS.

    Raises:
        PrerequisiteError: naming the first profile whose credentials do not work
    """
    from sslib.aws_client import mask_account_id, validate_aws_credentials

    for account in accounts:
        ok, account_id, error = validate_aws_credentials(account)
        if not ok:
            raise PrerequisiteError(
                f"AWS credentials not usable for {account.label} profile '{account.profile}': {error}"
            )
        log_info(f"{account.label.capitalize()} account: {mask_account_id(account_id)} ({account.region})")


# =============================================================================
# STANDARDIZED ERROR HANDLING
# =============================================================================

# TypeVar for generic return types
T = TypeVar('T')


def describe_aws_error(operation_name: str, e: Exception) -> str:
    """Build the standard one-line description for a botocore/boto3 exception."""
    from botocore.exceptions import ClientError, NoCredentialsError, ProfileNotFound, WaiterError

    if isinstance(e, NoCredentialsError):
        return (f"{operation_name}: No AWS credentials found. "
                "Please configure credentials using 'aws configure' or environment variables.")
    if isinstance(e, ProfileNotFound):
        return f"{operation_name}: {e}"
    if isinstance(e, ClientError):
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        error_msg = e.response.get('Error', {}).get('Message', str(e))
        return f"{operation_name}: AWS error [{error_code}]: {error_msg}"
    if isinstance(e, WaiterError):
        return f"{operation_name}: waiter failed: {e}"
    return f"{operation_name}: Unexpected error: {e}"


def aws_error_handler(
    operation_name: str,
    default_return: Any = None,
    reraise: bool = False
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for standardized AWS error handling.

    Provides consistent error handling for AWS operations, with specific
    messages for NoCredentialsError and ClientError (error code extraction).

    Args:
        operation_name: Human-readable operation description for logging
        default_return: Value to return on error (if not reraising)
        reraise: Whether to re-raise the exception after logging

    Returns:
        Decorator function that wraps the target function

    Example:
        @aws_error_handler("Listing Lambda functions", default_return=[])
        def list_function_names(lambda_client) -> List[str]:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                log_error(describe_aws_error(operation_name, e))
                log_debug(f"{operation_name}: {type(e).__name__}")
                if reraise:
                    raise
                return default_return

        return wrapper
    return decorator


@contextmanager
def handle_aws_operation(operation_name: str, suppress_errors: bool = False, as_warning: bool = False):
    """
    Context manager for AWS operations with standardized error handling.

    Args:
        operation_name: Human-readable operation description for logging
        suppress_errors: Whether to suppress exceptions (False = reraise)
        as_warning: Log suppressed failures as warnings (best-effort cleanup steps)

    Example:
        # Best-effort step: log and continue
        with handle_aws_operation(f"Deleting IAM role {name}", suppress_errors=True, as_warning=True):
            iam.delete_role(RoleName=name)
    """
    try:
        yield
    except Exception as e:
        message = describe_aws_error(operation_name, e)
        if suppress_errors and as_warning:
            log_warning(message)
        else:
            log_error(message)
        if not suppress_errors:
            raise
