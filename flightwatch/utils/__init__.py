"""
Utility modules for FlightWatch
"""
