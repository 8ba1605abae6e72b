"""Objective progress — derived percentage, clamped to 0..100."""

from __future__ import annotations


def calculate_progress(current_value: float, target_value: float) -> int:
    """round(current / target * 100) clamped to [0, 100]; 0 without a target."""
    if not target_value or target_value <= 0:
        return 0
    return min(100, max(0, round(current_value / target_value * 100)))
