"""
Price resolution and currency conversion engine.

Resolves customer-specific product prices from prioritised price lists,
applies sale and quantity tiers, and converts between currencies using a
cached exchange rate table.
"""

__version__ = "1.0.0"
