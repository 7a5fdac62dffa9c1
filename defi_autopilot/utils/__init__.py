"""Shared utilities: configuration, logging, audit trail, clocks, locks, errors."""
