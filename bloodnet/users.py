"""
User registry.

Email is the natural key of a user. Identity checks (who is calling) are the
job of the authentication layer in front of the engine; this module only
resolves and mutates user records.

inventorySummary and availableBloodTypes are projections owned by the
inventory aggregator and cannot be written through update_profile.
"""
import logging
from datetime import datetime

from bloodnet.constants import (BLOOD_TYPES, FACILITY_ROLES, ROLE_ADMIN, ROLES, USER_ACTIVE,
                                USER_BANNED, USER_STATUSES, USERS)
from bloodnet.errors import (ConflictError, DuplicateKeyError, NotFoundError,
                             PermissionDeniedError, ValidationError)

logger = logging.getLogger(__name__)

DERIVED_FIELDS = ('inventorySummary', 'availableBloodTypes')
PROFILE_FIELDS = ('name', 'mobileNumber', 'contactInfo', 'bloodType', 'age', 'gender',
                  'address', 'city', 'state', 'licenseNumber', 'abhaId', 'patientId',
                  'medicalReports')


def normalize_email(email):
    return (email or '').strip().lower()


def empty_inventory_summary():
    return {'whole_blood': 0, 'plasma': 0, 'red_blood_cells': 0}


def is_facility(user):
    return user.get('role') in FACILITY_ROLES


def register_user(store, user):
    """Create a user record; new users are always active"""
    email = normalize_email(user.get('email'))
    if not email:
        raise ValidationError("email is required")
    if '@' not in email or any(c.isspace() for c in email):
        raise ValidationError(f"Invalid email: {email!r}")
    role = user.get('role')
    if role not in ROLES or role == ROLE_ADMIN:
        raise ValidationError(f"Invalid role: {role}")
    if user.get('bloodType') and user['bloodType'] not in BLOOD_TYPES:
        raise ValidationError(f"Invalid blood type: {user['bloodType']}")
    for field in DERIVED_FIELDS:
        if field in user:
            raise ValidationError(f"{field} is computed from inventory and cannot be set")

    record = {k: v for k, v in user.items() if k != 'password'}
    record.update({
        'email': email,
        'status': USER_ACTIVE,
        'registeredAt': datetime.now().isoformat(),
    })
    if role in FACILITY_ROLES:
        record['inventorySummary'] = empty_inventory_summary()
        record['availableBloodTypes'] = []

    try:
        saved = store.insert_one(USERS, record)
    except DuplicateKeyError:
        raise ConflictError(f"Email already registered: {email}")
    logger.info("Registered %s %s", role, email)
    return saved


def get_user(store, email):
    if not email:
        return None
    return store.get(USERS, normalize_email(email))


def require_user(store, email):
    """Resolve a user or raise NotFoundError"""
    user = get_user(store, email)
    if not user:
        raise NotFoundError(f"User not found: {email}")
    return user


def require_active(user):
    if user.get('status') == USER_BANNED:
        raise PermissionDeniedError(f"{user['email']} is banned")
    return user


def require_facility(store, email):
    user = require_user(store, email)
    if not is_facility(user):
        raise PermissionDeniedError(f"{email} is not a hospital or blood bank")
    return user


def update_profile(store, email, changes):
    """Edit profile fields; anything outside PROFILE_FIELDS is rejected"""
    email = normalize_email(email)
    blocked = sorted(set(changes) - set(PROFILE_FIELDS))
    if blocked:
        raise ValidationError(f"Cannot update fields: {', '.join(blocked)}")
    if changes.get('bloodType') and changes['bloodType'] not in BLOOD_TYPES:
        raise ValidationError(f"Invalid blood type: {changes['bloodType']}")
    if not changes:
        return require_user(store, email)
    if not store.update_one(USERS, email, changes):
        raise NotFoundError(f"User not found: {email}")
    return require_user(store, email)


def set_status(store, email, status):
    """Admin action: ban or reinstate a user"""
    email = normalize_email(email)
    if status not in USER_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    if not store.update_one(USERS, email, {'status': status}):
        raise NotFoundError(f"User not found: {email}")
    logger.info("User %s is now %s", email, status)
    return require_user(store, email)


def delete_user(store, email, admin_email=None):
    email = normalize_email(email)
    if admin_email and email == normalize_email(admin_email):
        raise PermissionDeniedError("Cannot delete admin user.")
    deleted = store.delete_one(USERS, email)
    if deleted:
        logger.info("Deleted user %s", email)
    return {'deletedCount': 1 if deleted else 0}


def list_users(store):
    """All users except admins"""
    return [u for u in store.find(USERS, sort=[('email', 1)]) if u.get('role') != ROLE_ADMIN]


def active_users(store, roles=None, exclude=None):
    """
    Users eligible to receive a fan-out.
    Banned users and the excluded email (usually the actor) never appear.
    """
    filter_ = {'status': USER_ACTIVE}
    if roles:
        filter_['role'] = tuple(roles)
    return [u for u in store.find(USERS, filter_)
            if u.get('role') != ROLE_ADMIN and u['email'] != exclude]


def ensure_admin(store, email, name='Administrator'):
    """Seed the administrator account if it does not exist yet"""
    existing = get_user(store, email)
    if existing:
        return existing
    try:
        admin = store.insert_one(USERS, {
            'email': normalize_email(email),
            'role': ROLE_ADMIN,
            'name': name,
            'status': USER_ACTIVE,
            'registeredAt': datetime.now().isoformat(),
        })
    except DuplicateKeyError:
        return get_user(store, email)
    logger.info("Seeded admin account %s", email)
    return admin
