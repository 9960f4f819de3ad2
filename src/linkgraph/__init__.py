"""Typed, weighted link graph between wiki entities.

Backlinks, type-diverse related-page ranking and neighborhood views over a
relational edge table.
"""

__version__ = "0.1.0"
