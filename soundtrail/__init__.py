"""
soundtrail - listening history ingestion, genre classification and analytics.
"""

__version__ = "0.1.0"
