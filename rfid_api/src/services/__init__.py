"""Business logic services.

This package contains the scan orchestration, chat notification fan-out,
live feed broadcasting and Telegram update intake used by the API routes.
"""
