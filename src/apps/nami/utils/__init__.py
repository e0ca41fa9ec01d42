"""Shared CLI helpers for Nami."""
