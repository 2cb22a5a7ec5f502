"""
Web interface for FlightWatch
"""
