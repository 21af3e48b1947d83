"""
Facility inventory: BloodUnit CRUD and the Inventory Summary Aggregator.

The aggregator is the only writer of a facility's inventorySummary and
availableBloodTypes. Every unit mutation below ends with recompute() for the
owning facility, and expirationDate is always derived, never accepted from
the caller.
"""
import logging

from bloodnet import expiry, validation
from bloodnet.constants import BLOOD_UNITS, USERS
from bloodnet.errors import NotFoundError, PermissionDeniedError, ValidationError
from bloodnet.users import empty_inventory_summary, require_active, require_facility

logger = logging.getLogger(__name__)

UNIT_FIELDS = ('bloodType', 'donationType', 'units', 'collectionDate', 'storageConditions')


# ============== AGGREGATOR ==============

def summarize(units):
    """
    Sum units per donation type and collect the blood types present.
    Returns (inventorySummary, availableBloodTypes)
    """
    summary = empty_inventory_summary()
    blood_types = set()
    for unit in units:
        if unit.get('donationType') in summary:
            summary[unit['donationType']] += int(unit.get('units', 0))
        blood_types.add(unit['bloodType'])
    return summary, sorted(blood_types)


def _read_summary(store, facility_email):
    return summarize(store.find(BLOOD_UNITS, {'location': facility_email}))


def recompute(store, facility_email, max_rounds=5):
    """
    Rebuild the facility's cached summary from its current BloodUnit rows.

    A concurrent recompute may write a summary built from an older read, so
    after every write the units are read again and the write repeated until
    the written summary matches the units read after it.
    """
    summary, blood_types = _read_summary(store, facility_email)
    for _ in range(max_rounds):
        found = store.update_one(USERS, facility_email, {
            'inventorySummary': summary,
            'availableBloodTypes': blood_types,
        })
        if not found:
            logger.warning("Inventory summary for unknown facility %s not written", facility_email)
            return summary, blood_types
        latest = _read_summary(store, facility_email)
        if latest == (summary, blood_types):
            logger.debug("Recomputed inventory for %s: %s", facility_email, summary)
            return summary, blood_types
        summary, blood_types = latest
    logger.warning("Inventory for %s still changing after %d rounds", facility_email, max_rounds)
    return summary, blood_types


# ============== UNIT CRUD ==============

def _validate_unit_fields(fields):
    if 'expirationDate' in fields:
        raise ValidationError("expirationDate is derived and cannot be supplied")
    if 'location' in fields:
        raise ValidationError("location is set from the owning facility")
    if 'bloodType' in fields:
        validation.blood_type(fields['bloodType'])
    if 'donationType' in fields:
        validation.donation_type(fields['donationType'])
    if 'units' in fields:
        validation.positive_units(fields['units'])


def add_unit(store, facility_email, unit):
    """Add an inventory lot to a hospital or blood bank"""
    facility = require_active(require_facility(store, facility_email))
    validation.require_fields(unit, 'bloodType', 'donationType', 'units', 'collectionDate')
    _validate_unit_fields(unit)

    collected = expiry.parse_date(unit['collectionDate'])
    record = {k: unit[k] for k in UNIT_FIELDS if k in unit}
    record.update({
        'units': int(unit['units']),
        'collectionDate': collected.isoformat(),
        'expirationDate': expiry.expiration_date(collected, unit['donationType']).isoformat(),
        'location': facility['email'],
    })
    saved = store.insert_one(BLOOD_UNITS, record)
    recompute(store, facility['email'])
    logger.info("Added %s unit(s) of %s %s to %s", record['units'], record['bloodType'],
                record['donationType'], facility['email'])
    return saved


def get_unit(store, unit_id):
    unit = store.get(BLOOD_UNITS, unit_id)
    if not unit:
        raise NotFoundError(f"Blood unit not found: {unit_id}")
    return unit


def _owned_unit(store, unit_id, owner_email):
    unit = get_unit(store, unit_id)
    if owner_email is not None and unit['location'] != owner_email:
        raise PermissionDeniedError(f"Blood unit {unit_id} belongs to another facility")
    return unit


def update_unit(store, unit_id, changes, owner_email=None):
    """Edit a lot; expiration is recomputed from the merged collection date and type"""
    _validate_unit_fields(changes)
    existing = _owned_unit(store, unit_id, owner_email)

    collected = expiry.parse_date(changes.get('collectionDate') or existing['collectionDate'])
    donation_type = changes.get('donationType') or existing['donationType']
    patch = {k: changes[k] for k in UNIT_FIELDS if k in changes}
    patch.update({
        'collectionDate': collected.isoformat(),
        'expirationDate': expiry.expiration_date(collected, donation_type).isoformat(),
    })
    if not store.update_one(BLOOD_UNITS, unit_id, patch):
        raise NotFoundError(f"Blood unit not found: {unit_id}")
    recompute(store, existing['location'])
    return get_unit(store, unit_id)


def delete_unit(store, unit_id, owner_email=None):
    existing = store.get(BLOOD_UNITS, unit_id)
    if not existing:
        return {'deletedCount': 0}
    if owner_email is not None and existing['location'] != owner_email:
        raise PermissionDeniedError(f"Blood unit {unit_id} belongs to another facility")
    deleted = store.delete_one(BLOOD_UNITS, unit_id)
    recompute(store, existing['location'])
    return {'deletedCount': 1 if deleted else 0}


def list_units(store, facility_email):
    return store.find(BLOOD_UNITS, {'location': facility_email}, sort=[('expirationDate', 1)])


def all_inventory(store):
    """Every unit joined with its facility's display fields"""
    facilities = {}
    result = []
    for unit in store.find(BLOOD_UNITS, sort=[('expirationDate', 1)]):
        location = unit['location']
        if location not in facilities:
            facilities[location] = store.get(USERS, location) or {}
        facility = facilities[location]
        result.append({
            **unit,
            'locationName': facility.get('name'),
            'locationEmail': facility.get('email'),
            'locationMobile': facility.get('mobileNumber'),
        })
    return result


def total_units(store):
    return sum(int(u.get('units', 0)) for u in store.find(BLOOD_UNITS))
