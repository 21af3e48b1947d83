"""Input checks shared by requests, offers, inventory and transfers."""
from bloodnet.constants import BLOOD_TYPES, DONATION_TYPES, URGENCIES
from bloodnet.errors import ValidationError


def require_fields(data, *fields):
    for field in fields:
        if data.get(field) in (None, ''):
            raise ValidationError(f"{field} is required")


def positive_units(units):
    if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
        raise ValidationError("units must be a positive whole number")
    return units


def blood_type(value):
    if value not in BLOOD_TYPES:
        raise ValidationError(f"Invalid blood type: {value}")
    return value


def donation_type(value):
    if value not in DONATION_TYPES:
        raise ValidationError(f"Invalid donation type: {value}")
    return value


def urgency(value):
    if value not in URGENCIES:
        raise ValidationError(f"Invalid urgency: {value}")
    return value
