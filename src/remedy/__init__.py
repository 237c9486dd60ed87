"""Auditor-driven remediation loop: plan, apply, validate, and gate code changes."""

__version__ = "0.1.0"

__all__ = ["__version__"]
