"""
Offer Lookup - Core Package

Direct-mail property offer lookup: property records, offer search and
bulk import of offer spreadsheets.
"""

__version__ = "0.1.0"
