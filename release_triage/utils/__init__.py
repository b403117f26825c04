"""Shared utilities: logging, retries and async subprocess execution."""
