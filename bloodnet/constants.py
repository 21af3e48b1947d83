# ============== ROLES & STATUSES ==============

ROLE_DONOR = 'Donor'
ROLE_INDIVIDUAL = 'Individual'
ROLE_HOSPITAL = 'Hospital'
ROLE_BLOOD_BANK = 'Blood Bank'
ROLE_ADMIN = 'Admin'

ROLES = (ROLE_DONOR, ROLE_INDIVIDUAL, ROLE_HOSPITAL, ROLE_BLOOD_BANK, ROLE_ADMIN)
FACILITY_ROLES = (ROLE_HOSPITAL, ROLE_BLOOD_BANK)
RESPONDER_ROLES = (ROLE_DONOR, ROLE_HOSPITAL, ROLE_BLOOD_BANK)

USER_ACTIVE = 'active'
USER_BANNED = 'banned'
USER_STATUSES = (USER_ACTIVE, USER_BANNED)

REQUEST_PENDING = 'Pending'
REQUEST_IN_PROGRESS = 'In Progress'
REQUEST_FULFILLED = 'Fulfilled'
REQUEST_DECLINED = 'Declined'

OFFER_AVAILABLE = 'Available'
OFFER_CLAIMED = 'Claimed'

URGENCIES = ('Low', 'Medium', 'High', 'Critical')

# ============== NOTIFICATION TYPES ==============

NOTIFY_REQUEST = 'request'
NOTIFY_RESPONSE = 'response'
NOTIFY_DECLINE = 'decline'
NOTIFY_EMERGENCY = 'emergency'
NOTIFY_OFFER = 'offer'
NOTIFY_CLAIM = 'claim'

NOTIFICATION_TYPES = (NOTIFY_REQUEST, NOTIFY_RESPONSE, NOTIFY_DECLINE,
                      NOTIFY_EMERGENCY, NOTIFY_OFFER, NOTIFY_CLAIM)

# ============== BLOOD ==============

BLOOD_TYPES = ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')
NOT_APPLICABLE = 'N/A'

WHOLE_BLOOD = 'whole_blood'
PLASMA = 'plasma'
RED_BLOOD_CELLS = 'red_blood_cells'
DONATION_TYPES = (WHOLE_BLOOD, PLASMA, RED_BLOOD_CELLS)

# ============== COLLECTIONS ==============

USERS = 'users'
BLOOD_UNITS = 'blood_units'
BLOOD_REQUESTS = 'blood_requests'
NOTIFICATIONS = 'notifications'
BLOOD_OFFERS = 'blood_offers'
TRANSFERS = 'transfers'
DONATION_HISTORY = 'donation_history'

COLLECTIONS = (USERS, BLOOD_UNITS, BLOOD_REQUESTS, NOTIFICATIONS, BLOOD_OFFERS, TRANSFERS,
               DONATION_HISTORY)
