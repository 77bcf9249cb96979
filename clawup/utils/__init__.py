"""Utility helpers for clawup."""
