"""Audit and reconcile Dependabot configuration across a GitHub organization."""

__version__ = "0.1.0"
