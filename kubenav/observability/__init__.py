"""Logging helpers for kubenav."""
