"""
BZpark sensor bridge and hold-payment reservation client
"""

__version__ = "1.2.0"
