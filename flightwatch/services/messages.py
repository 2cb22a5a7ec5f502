"""
Chat message texts for alerts and reminders
"""
from datetime import datetime
from typing import Optional

from flightwatch.models.schemas import Change, ChangeKind, FlightRecord, ReminderKind

CHECK_IN_URLS = {
    'American Airlines': 'https://www.aa.com/checkin',
    'Delta Air Lines': 'https://www.delta.com/checkin',
    'United Airlines': 'https://www.united.com/checkin',
    'Southwest Airlines': 'https://www.southwest.com/air/check-in/',
    'JetBlue Airways': 'https://www.jetblue.com/checkin',
    'Alaska Airlines': 'https://www.alaskaair.com/checkin',
    'Spirit Airlines': 'https://www.spirit.com/check-in',
    'Frontier Airlines': 'https://www.flyfrontier.com/checkin',
}

REMINDER_LEAD = {
    ReminderKind.CHECKIN_24H: "24 hours",
    ReminderKind.DROPOFF_VOLUNTEER_6H: "6 hours",
    ReminderKind.DROPOFF_VOLUNTEER_3H: "3 hours",
    ReminderKind.PICKUP_VOLUNTEER_6H: "6 hours",
    ReminderKind.PICKUP_VOLUNTEER_1H: "1 hour",
}


def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "Not available"
    return value.strftime("%Y-%m-%d %H:%M UTC")


def _flight_line(flight: FlightRecord) -> str:
    airline = f"{flight.airline} " if flight.airline else ""
    return f"✈️ Flight: {airline}{flight.flight_number}\n📍 Route: {flight.origin} → {flight.destination}\n"


def render_change_alert(flight: FlightRecord, change: Change, airport_code: Optional[str] = None) -> str:
    """Alert text for a reportable change; ``airport_code`` personalises dashboard copies"""
    message = f"🚨 Flight Alert: {flight.flight_number}\n\n"

    if change.kind == ChangeKind.CANCELLATION:
        message += "❌ FLIGHT CANCELLED\n\n"
    elif change.kind == ChangeKind.DELAY:
        if change.delay_minutes > 0:
            message += f"⏰ DELAY UPDATE\nDelayed by: {change.delay_minutes} minutes\n"
        elif change.delay_minutes < 0:
            message += f"⏰ SCHEDULE UPDATE\nEarly by: {abs(change.delay_minutes)} minutes\n"
        else:
            message += "⏰ SCHEDULE UPDATE\nBack on time\n"
        expected = change.status.expected_departure() if change.status else None
        message += f"New departure time: {format_time(expected or flight.scheduled_departure)}\n\n"
    elif change.kind == ChangeKind.LOCATION:
        message += "🚪 GATE / TERMINAL CHANGE\n"
        message += f"Terminal: {change.previous_terminal or '-'} → {change.terminal or '-'}\n"
        message += f"Gate: {change.previous_gate or '-'} → {change.gate or '-'}\n\n"

    message += _flight_line(flight)
    message += f"🛫 Scheduled departure: {format_time(flight.scheduled_departure)}\n"

    if flight.passengers:
        message += "\n👥 Passengers\n"
        for passenger in flight.passengers:
            message += f"• {passenger.name}\n"

    if airport_code:
        message += f"\n📍 Relevant to your airport: {airport_code}\n"

    message += "\n📱 Please adjust your schedule accordingly."
    return message


def render_reminder(flight: FlightRecord, kind: ReminderKind) -> str:
    lead = REMINDER_LEAD[kind]
    header = _flight_line(flight) + f"🛫 Departure: {format_time(flight.scheduled_departure)}\n\n"

    if kind == ReminderKind.CHECKIN_24H:
        url = CHECK_IN_URLS.get(flight.airline or "")
        how = f"online at {url}" if url else "via your airline's website or mobile app"
        message = "⏰ CHECK-IN REMINDER - 24 Hours Notice\n\n" + header
        message += "🎫 Time to check in!\nMost airlines allow online check-in 24 hours before departure.\n\n"
        message += f"📱 Check in {how}\n"
        if flight.dropoff_volunteer:
            message += f"\n🚗 Dropoff: {flight.dropoff_volunteer.name}"
            if flight.dropoff_volunteer.phone:
                message += f" ({flight.dropoff_volunteer.phone})"
        if flight.pickup_volunteer:
            message += f"\n🚗 Pickup: {flight.pickup_volunteer.name}"
            if flight.pickup_volunteer.phone:
                message += f" ({flight.pickup_volunteer.phone})"
        return message

    leg = "DROPOFF" if kind in (ReminderKind.DROPOFF_VOLUNTEER_6H, ReminderKind.DROPOFF_VOLUNTEER_3H) else "PICKUP"
    message = f"🚨 {leg} REMINDER\n\n" + header
    if flight.passengers:
        message += "👥 Passengers:\n"
        for passenger in flight.passengers:
            message += f"• {passenger.name} - {passenger.phone or '(no phone)'}\n"
    else:
        message += "👥 Passengers: No passengers listed\n"
    message += f"\n⏰ {lead} until departure\n\nPlease be ready and confirm receipt of this message."
    return message
