"""Compression savings reporting."""

from __future__ import annotations

from image_library.models import SavingsReport


def calculate_savings(original_size: int, variant_size: int) -> SavingsReport:
    """Compute how many bytes a variant saves relative to the original.

    A zero-byte original has no meaningful ratio, so its percentage is 0.
    """
    absolute = original_size - variant_size
    if original_size == 0:
        percentage = 0.0
    else:
        percentage = round(absolute / original_size * 100, 2)
    return SavingsReport(
        original_size=original_size,
        variant_size=variant_size,
        absolute_saving=absolute,
        percentage_saving=percentage,
    )
