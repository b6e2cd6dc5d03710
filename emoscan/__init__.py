"""emoscan: single-frame facial emotion scanning kiosk controller."""

__version__ = "0.1.0"
