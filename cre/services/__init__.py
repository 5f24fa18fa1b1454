"""Deterministic CRE services."""
