"""Helper utilities."""

from .validation import check_lp_data

__all__ = ["check_lp_data"]
