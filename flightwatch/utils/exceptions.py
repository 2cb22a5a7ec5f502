"""
Custom exceptions for FlightWatch
"""
from typing import List, Optional


class FlightWatchException(Exception):
    """Base exception for FlightWatch application"""
    def __init__(self, message: str, error_code: str = None, context: dict = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "GENERIC_ERROR"
        self.context = context or {}

class ProviderException(FlightWatchException):
    """Exception raised by the flight-status provider"""
    pass

class ProviderUnavailable(ProviderException):
    """Timeout, 5xx, quota exhaustion or malformed provider response"""
    pass

class ProviderNotFound(ProviderException):
    """Provider has no flight for the given number/date"""
    pass

class ProviderAmbiguous(ProviderException):
    """Provider matched more than one flight; needs a human to pick one"""
    def __init__(self, message: str, candidates: Optional[List] = None,
                 error_code: str = None, context: dict = None):
        super().__init__(message, error_code or "PROVIDER_AMBIGUOUS", context)
        self.candidates = candidates or []

class DeliveryFailed(FlightWatchException):
    """Messaging channel did not accept a message for one recipient"""
    pass

class ConfigurationException(FlightWatchException):
    """Exception related to configuration issues"""
    pass

class ConfigurationInvalid(ConfigurationException):
    """A configuration value was rejected at the configuration boundary"""
    pass

class RaceDetected(FlightWatchException):
    """Per-flight lock already held; the flight is skipped this tick"""
    pass

class DataValidationException(FlightWatchException):
    """Exception raised when data validation fails"""
    pass

class DatabaseException(FlightWatchException):
    """Exception related to database operations"""
    pass
