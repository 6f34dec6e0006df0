"""
Quote Engine Package

Formula-driven pricing for service quotes. Evaluates a catalog of pricing
rules against a set of answers and aggregates the results into per-service
totals.
"""

__version__ = "1.0.0"
