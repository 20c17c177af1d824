"""Shared utilities: configuration, logging, errors and CLI plumbing."""
