"""
FlightWatch - flight delay monitoring and notification scheduler
"""

__version__ = "1.0.0"
