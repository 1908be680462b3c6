"""
Utility classes and functions for kvconfig.

General-purpose utilities that don't belong to a specific component.
"""

from kvconfig.utils.case_insensitive import CaseInsensitiveMapping

__all__ = ["CaseInsensitiveMapping"]
