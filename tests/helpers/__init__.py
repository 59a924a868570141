"""Test helpers for DSS."""
