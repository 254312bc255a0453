"""Resource Management timesheet synchronizer."""

__version__ = "0.3.0"
