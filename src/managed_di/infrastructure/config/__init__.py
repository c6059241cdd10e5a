"""
Configuration module.

Loads class descriptors and configuration sections from YAML or JSON files.
"""

from .loader import load_descriptors, parse_descriptors

__all__ = [
    "load_descriptors",
    "parse_descriptors",
]
