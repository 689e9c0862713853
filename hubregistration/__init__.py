"""Hub-side reconcilers for managed cluster registration, run against an in-memory resource store."""

__version__ = "0.1.0"