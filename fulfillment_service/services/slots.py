"""
Slot helpers shared by every path that places a 1:1 session on the calendar.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from flask import current_app
from fulfillment_service.errors import ConflictError, ValidationError
from fulfillment_service.models.booking import ACTIVE_STATUSES, Booking


def parse_datetime(value, field="scheduled_at"):
    """ISO-8601 string -> aware UTC datetime. Naive input is read in the booking timezone."""
    if isinstance(value, datetime):
        parsed = value
    else:
        if not value or not isinstance(value, str):
            raise ValidationError(f"Missing field: {field}")
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"Invalid datetime for {field}: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_booking_timezone())
    return parsed.astimezone(timezone.utc)


def parse_slot(date_str, time_str):
    """YYYY-MM-DD + HH:MM in the booking timezone -> aware UTC datetime."""
    if not date_str or not time_str:
        raise ValidationError("Missing fields: date, time")
    try:
        local = datetime.strptime(f"{date_str} {time_str}", "%Y-%m-%d %H:%M")
    except ValueError as e:
        raise ValidationError(f"Invalid date/time: {date_str} {time_str}") from e
    return local.replace(tzinfo=_booking_timezone()).astimezone(timezone.utc)


def _booking_timezone():
    name = current_app.config.get("BOOKING_TIMEZONE", "UTC")
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        current_app.logger.warning("Unknown BOOKING_TIMEZONE %s, using UTC", name)
        return timezone.utc


def hours_until(moment, now):
    return (moment - now).total_seconds() / 3600


def find_slot_holder(scheduled_at, exclude_booking_id=None):
    """
    Live 1:1 session at this time, whatever its resource. Paid sessions, pack
    redemptions and credit bookings all share the practitioner's calendar.
    """
    query = Booking.query.filter(
        Booking.booking_type == "SESSION",
        Booking.scheduled_at == scheduled_at,
        Booking.status.in_(ACTIVE_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.booking_id != exclude_booking_id)
    return query.first()


def ensure_slot_free(scheduled_at, exclude_booking_id=None):
    if find_slot_holder(scheduled_at, exclude_booking_id):
        raise ConflictError("This time slot is already booked. Please choose another one.")


def flexible_session_resource():
    return (
        current_app.config["FLEXIBLE_SESSION_RESOURCE_ID"],
        current_app.config["FLEXIBLE_SESSION_RESOURCE_NAME"],
    )
