"""
Offer Lookup - Core Package

This package contains the bulk property-offer import service: file
ingestion, dedup/upsert, job tracking and the REST API.
"""

__version__ = "0.1.0"
