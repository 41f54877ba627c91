"""
Calculators Package

Provides the pure calculation components for settlement processing.
"""

from .line_items import LineItemCalculator, round_won
from .payout import PayoutCalculator

__all__ = [
    "LineItemCalculator",
    "PayoutCalculator",
    "round_won",
]
