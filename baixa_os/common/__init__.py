"""Shared helpers used across the GCOM automation."""
