"""
NYC Property Signals - Core Package

This package contains the batch pipeline that ingests NYC open data,
resolves it to canonical properties and computes per-property signals.
"""

__version__ = "0.1.0"
