"""Exception types raised by the workflow supervision package."""


class SupervisionError(Exception):
    """Base class for all supervision errors."""


class MalformedEventError(SupervisionError, ValueError):
    """A workflow log entry could not be turned into an Event."""


class UnmappedIssueError(SupervisionError, KeyError):
    """An issue type has no intervention mapping.

    This is a programming defect: every IssueType member must appear in the
    intervention tables.
    """


class ConfigError(SupervisionError):
    """A configuration file exists but cannot be parsed."""
