"""
STRATLAB: rule-based strategy conditions over technical indicators
"""
__version__ = "1.0.0"
