"""Eliot admin console: decoder generation workflow and device tooling API."""

__version__ = "0.1.0"
