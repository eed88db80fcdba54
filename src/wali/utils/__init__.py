"""Shared utilities: configuration, logging, locks and retry."""
