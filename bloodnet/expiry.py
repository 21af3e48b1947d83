"""Expiry Calculator: shelf life of a collected unit by donation type."""
from datetime import date, datetime, timedelta

from bloodnet.constants import DONATION_TYPES
from bloodnet.errors import ValidationError

# Whole blood and red cells keep 42 days refrigerated, plasma a year frozen
SHELF_LIFE_DAYS = {
    'whole_blood': 42,
    'red_blood_cells': 42,
    'plasma': 365,
}


def shelf_life(donation_type):
    """Days a unit of this donation type stays usable"""
    if donation_type not in DONATION_TYPES:
        raise ValidationError(f"Unknown donation type: {donation_type}")
    return SHELF_LIFE_DAYS[donation_type]


def expiration_date(collection_date, donation_type):
    """
    Derive the expiration date of a unit.
    Example: whole_blood collected 2024-01-01 expires 2024-02-12
    """
    if not isinstance(collection_date, (date, datetime)):
        raise ValidationError("collection date must be a date")
    return collection_date + timedelta(days=shelf_life(donation_type))


def parse_date(value):
    """Parse an ISO date/datetime string (or pass a date through)"""
    if isinstance(value, (date, datetime)):
        return value
    if not value:
        raise ValidationError("collectionDate is required")
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")


def is_expired(unit, today=None):
    today = today or datetime.now().date()
    expires = parse_date(unit['expirationDate'])
    if isinstance(expires, datetime):
        expires = expires.date()
    return expires < today

