"""
Calculators Package

Split calculation and upline resolution.
"""

from .commission import CommissionCalculator, quantize_money
from .upline import UplineResolver

__all__ = [
    "CommissionCalculator",
    "UplineResolver",
    "quantize_money",
]
