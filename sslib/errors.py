"""
sslib.errors — Exception hierarchy for the migration toolkit.

Every fatal condition raised by the library derives from MigrationToolkitError so
entry points can catch one base class, log it, and exit non-zero.
"""


class MigrationToolkitError(Exception):
    """Base class for all toolkit failures."""
    pass


class ConfigError(MigrationToolkitError):
    """Raised when the configuration file is missing, unparseable, or incomplete."""
    pass


class PrerequisiteError(MigrationToolkitError):
    """Raised when a required package, file, or credential is unavailable."""
    pass


class MissingResourceError(MigrationToolkitError):
    """Raised when a lookup that must succeed (stack output, cluster) came back empty."""
    pass


class ProviderFailureError(MigrationToolkitError):
    """Raised when AWS reports a terminal failure state for an asynchronous operation."""
    pass


class UnexpectedStatusError(ProviderFailureError):
    """Raised when AWS returns a status string the toolkit does not recognise."""

    def __init__(self, resource: str, status: str):
        super().__init__(f"Unrecognised status '{status}' for {resource}")
        self.resource = resource
        self.status = status


class PollTimeoutError(MigrationToolkitError):
    """Raised when a bounded poll exhausts its attempts without reaching a terminal state."""

    def __init__(self, description: str, attempts: int, last_value=None):
        super().__init__(
            f"Timed out waiting for {description} after {attempts} attempt(s)"
            f" (last observed: {last_value!r})"
        )
        self.description = description
        self.attempts = attempts
        self.last_value = last_value


class ExistingStackError(MigrationToolkitError):
    """Raised when the target infrastructure stack already exists before cluster creation."""
    pass
