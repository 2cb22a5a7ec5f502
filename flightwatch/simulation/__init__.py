"""
Virtual-clock simulation for FlightWatch
"""
from .day_simulator import DaySimulator, ScriptedProvider, VirtualClock

__all__ = ['DaySimulator', 'ScriptedProvider', 'VirtualClock']
