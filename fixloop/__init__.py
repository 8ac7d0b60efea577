"""FixLoop: multi-pass, cache-assisted fix application for static analysis findings."""

__version__ = "0.1.0"
