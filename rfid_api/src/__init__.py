"""FastAPI service for RFID animal lookups.

This package provides the REST endpoints that look animal records up by
RFID tag and relay each scan to Telegram recipients and a live feed.
"""

__version__ = "1.0.0"
