"""Plugin pipeline and policy engine for a MongoDB proxy."""

__version__ = "0.1.0"