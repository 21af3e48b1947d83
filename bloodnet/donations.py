"""
Donation history and donor eligibility.

A donor who gave blood within the last DONATION_GAP_DAYS is deferred and is
left out of broadcast solicitations until the gap has passed.
"""
import logging
from datetime import date, datetime, timedelta

from bloodnet import expiry, validation
from bloodnet.constants import DONATION_HISTORY, NOT_APPLICABLE, ROLE_DONOR
from bloodnet.errors import NotFoundError, PermissionDeniedError, ValidationError
from bloodnet.users import normalize_email, require_active, require_user

logger = logging.getLogger(__name__)

DONATION_GAP_DAYS = 56

EDITABLE_FIELDS = ('date', 'location', 'recipient', 'units', 'bloodType')


def _as_date(value):
    parsed = expiry.parse_date(value)
    return parsed.date() if isinstance(parsed, datetime) else parsed


def _check(fields):
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown donation fields: {', '.join(sorted(unknown))}")
    if 'units' in fields:
        validation.positive_units(fields['units'])
    if 'bloodType' in fields:
        validation.blood_type(fields['bloodType'])
    if 'date' in fields:
        _as_date(fields['date'])


def require_donor(store, email):
    user = require_user(store, email)
    if user.get('role') != ROLE_DONOR:
        raise PermissionDeniedError(f"{email} is not a donor")
    return user


# ============== HISTORY CRUD ==============

def add_donation(store, donor_email, donation):
    """Record a past donation; blood type defaults to the donor's own"""
    donor = require_active(require_donor(store, donor_email))
    validation.require_fields(donation, 'date', 'location', 'units')
    record = dict(donation)
    if not record.get('bloodType'):
        record['bloodType'] = donor.get('bloodType')
    record.setdefault('recipient', NOT_APPLICABLE)
    _check(record)
    record['date'] = expiry.parse_date(record['date']).isoformat()
    record['donorEmail'] = donor['email']

    saved = store.insert_one(DONATION_HISTORY, record)
    logger.info("Donation %s recorded for %s on %s", saved['id'], donor['email'], record['date'])
    return saved


def get_donation(store, donation_id):
    donation = store.get(DONATION_HISTORY, donation_id)
    if not donation:
        raise NotFoundError(f"Donation not found: {donation_id}")
    return donation


def _owned(store, donation_id, donor_email):
    donation = get_donation(store, donation_id)
    if donor_email is not None and donation['donorEmail'] != normalize_email(donor_email):
        raise PermissionDeniedError(f"Donation {donation_id} belongs to another donor")
    return donation


def update_donation(store, donation_id, changes, donor_email=None):
    _check(changes)
    existing = _owned(store, donation_id, donor_email)
    if not changes:
        return existing
    patch = dict(changes)
    if 'date' in patch:
        patch['date'] = expiry.parse_date(patch['date']).isoformat()
    if not store.update_one(DONATION_HISTORY, donation_id, patch):
        raise NotFoundError(f"Donation not found: {donation_id}")
    return get_donation(store, donation_id)


def delete_donation(store, donation_id, donor_email=None):
    existing = store.get(DONATION_HISTORY, donation_id)
    if not existing:
        return {'deletedCount': 0}
    if donor_email is not None and existing['donorEmail'] != normalize_email(donor_email):
        raise PermissionDeniedError(f"Donation {donation_id} belongs to another donor")
    deleted = store.delete_one(DONATION_HISTORY, donation_id)
    return {'deletedCount': 1 if deleted else 0}


def donation_history(store, donor_email):
    """Newest first"""
    return store.find(DONATION_HISTORY, {'donorEmail': normalize_email(donor_email)},
                      sort=[('date', -1)])


# ============== ELIGIBILITY ==============

def last_donation_date(store, donor_email):
    history = donation_history(store, donor_email)
    return _as_date(history[0]['date']) if history else None


def eligibility(store, donor_email, today=None):
    """
    Example: last donation 2024-01-01 -> next eligible 2024-02-26
    """
    today = today or date.today()
    last = last_donation_date(store, donor_email)
    if last is None:
        return {'eligible': True, 'lastDonationDate': None, 'nextEligibleDate': None}
    next_date = last + timedelta(days=DONATION_GAP_DAYS)
    return {
        'eligible': today >= next_date,
        'lastDonationDate': last.isoformat(),
        'nextEligibleDate': next_date.isoformat(),
    }


def deferred_donors(store, today=None):
    """Emails of donors still inside the gap after their latest donation"""
    today = today or date.today()
    cutoff = today - timedelta(days=DONATION_GAP_DAYS)
    return {d['donorEmail'] for d in store.find(DONATION_HISTORY)
            if _as_date(d['date']) > cutoff}
