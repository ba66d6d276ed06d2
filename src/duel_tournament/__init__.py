"""Duel Tournament.

Swiss and single-elimination tournaments of timed head-to-head problem
duels: pairing, standings, outcome resolution and round lifecycle.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
