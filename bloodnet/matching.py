"""
Blood compatibility and the estimation/matching service adapter.

The estimation and matching services are opaque callables taking and returning
plain dicts. When none is configured the local implementations below are used:
expiry comes from the shelf-life table, and matching allocates compatible,
unexpired units to open requests, most urgent first, soonest-expiring first.
"""
import json
import logging

from bloodnet import expiry
from bloodnet.constants import BLOOD_TYPES, WHOLE_BLOOD

logger = logging.getLogger(__name__)

# ============== BLOOD COMPATIBILITY MATRIX ==============
# Who can DONATE TO whom (Donor Blood Group -> Recipient Blood Groups)
BLOOD_COMPATIBILITY = {
    'A+': ['A+', 'AB+'],
    'A-': ['A+', 'A-', 'AB+', 'AB-'],
    'B+': ['B+', 'AB+'],
    'B-': ['B+', 'B-', 'AB+', 'AB-'],
    'AB+': ['AB+'],
    'AB-': ['AB+', 'AB-'],
    'O+': ['O+', 'A+', 'B+', 'AB+'],
    'O-': list(BLOOD_TYPES),  # Universal donor
}

# Who can RECEIVE FROM whom (Recipient Blood Group -> Donor Blood Groups)
RECEIVE_COMPATIBILITY = {
    recipient: [donor for donor, recipients in BLOOD_COMPATIBILITY.items() if recipient in recipients]
    for recipient in BLOOD_TYPES
}

URGENCY_ORDER = {'Critical': 0, 'High': 1, 'Medium': 2, 'Low': 3}


def compatible_donor_types(recipient_blood_type):
    """
    Donor blood types a recipient can receive.
    Example: For A+ recipient, returns ['A+', 'A-', 'O+', 'O-']
    """
    return RECEIVE_COMPATIBILITY.get(recipient_blood_type, [])


def local_estimate(payload):
    """Shelf-life based expiration estimate"""
    collected = expiry.parse_date(payload['collectionDate'])
    donation_type = payload.get('donationType') or WHOLE_BLOOD
    return {
        'estimatedExpirationDate': expiry.expiration_date(collected, donation_type).isoformat(),
        'confidenceLevel': 'High' if payload.get('donationType') else 'Medium',
    }


def allocate(requests, inventory, today=None):
    """Greedy allocation of inventory lots to requests"""
    remaining = {u['id']: int(u['units']) for u in inventory}
    lots = sorted((u for u in inventory if not expiry.is_expired(u, today)),
                  key=lambda u: u['expirationDate'])
    ordered = sorted((r for r in requests if r.get('bloodType') in BLOOD_TYPES),
                     key=lambda r: (URGENCY_ORDER.get(r.get('urgency'), 3),
                                    r.get('date') or ''))
    matches = []
    for request in ordered:
        needed = int(request['units'])
        donors = compatible_donor_types(request['bloodType'])
        # exact type first, then other compatible types
        candidates = sorted((u for u in lots if u['bloodType'] in donors
                             and u['donationType'] == request['donationType']),
                            key=lambda u: u['bloodType'] != request['bloodType'])
        allocations = []
        for unit in candidates:
            if needed <= 0:
                break
            take = min(needed, remaining[unit['id']])
            if take <= 0:
                continue
            remaining[unit['id']] -= take
            needed -= take
            allocations.append({'unitId': unit['id'], 'location': unit['location'],
                                'bloodType': unit['bloodType'], 'units': take,
                                'expirationDate': unit['expirationDate']})
        matches.append({
            'requestId': request['id'],
            'urgency': request.get('urgency'),
            'allocations': allocations,
            'unitsShort': max(needed, 0),
            'fulfillable': needed <= 0,
        })
    return matches


def local_match(payload):
    requests = json.loads(payload['hospitalRequests'])
    inventory = json.loads(payload['bloodBankInventory'])
    return {'matches': json.dumps(allocate(requests, inventory))}


class AIServices:
    """Holds the estimation and matching callables"""

    def __init__(self, estimate=None, match=None):
        self.estimate = estimate or local_estimate
        self.match = match or local_match

    def estimate_expiration(self, collection_date, blood_type, storage_conditions='',
                            donation_type=None):
        payload = {
            'collectionDate': str(collection_date),
            'bloodType': blood_type,
            'storageConditions': storage_conditions,
        }
        if donation_type:
            payload['donationType'] = donation_type
        return self.estimate(payload)

    def find_inventory_matches(self, requests, inventory):
        payload = {
            'hospitalRequests': json.dumps(requests, default=str),
            'bloodBankInventory': json.dumps(inventory, default=str),
        }
        logger.info("Matching %d request(s) against %d lot(s)", len(requests), len(inventory))
        return self.match(payload)
