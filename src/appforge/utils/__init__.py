"""Utilities for appforge."""

from appforge.utils.text_diff import unified_diff

__all__ = [
    "unified_diff",
]
