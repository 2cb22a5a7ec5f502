"""
End-to-end day simulation on the virtual clock
"""
import asyncio
from datetime import timedelta

from flightwatch.models.schemas import MonitoringPhase
from flightwatch.simulation.day_simulator import DaySimulator
from tests.conftest import BASE_TIME


class TestDaySimulator:

    def test_full_day(self):
        simulator = DaySimulator(seed=7, flight_count=4, hours=30, start=BASE_TIME)
        events = []

        async def collect(event):
            events.append(event)

        result = asyncio.run(simulator.simulate_day(callback=collect))

        assert result["ticks"] == 30 * 4
        assert result["polls"] > 0
        assert result["messages_sent"] > 0
        assert result["phases"]["active"] == 0
        assert result["phases"]["armed"] == 0
        assert events[-1]["type"] == "simulation_complete"

    def test_every_flight_gets_its_check_in_reminder_once(self):
        simulator = DaySimulator(seed=3, flight_count=3, hours=30, start=BASE_TIME)
        asyncio.run(simulator.simulate_day())

        for flight in simulator.flights:
            for passenger in flight.passengers:
                reminders = [t for t in simulator.channel.messages_for(passenger.chat_id)
                             if "CHECK-IN REMINDER" in t]
                assert len(reminders) == 1

    def test_flights_conclude(self):
        simulator = DaySimulator(seed=11, flight_count=3, hours=30, start=BASE_TIME)
        asyncio.run(simulator.simulate_day())

        for flight in simulator.flights:
            state = simulator.state_store.load(flight.flight_id)
            assert state.phase == MonitoringPhase.CONCLUDED
            assert state.concluded_at <= flight.scheduled_departure + timedelta(hours=4)
