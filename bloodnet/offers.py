"""
Offer Arbitration Engine.

A facility posts surplus units as an Available offer; another facility claims
it. Available -> Claimed happens exactly once, as a single conditional update
on the stored status. Losing a claim race is an ordinary outcome, reported
as a result rather than raised.
"""
import logging
from datetime import datetime

from bloodnet import validation
from bloodnet.constants import (BLOOD_OFFERS, FACILITY_ROLES, NOTIFY_CLAIM, NOTIFY_OFFER,
                                OFFER_AVAILABLE, OFFER_CLAIMED)
from bloodnet.errors import ConflictError, NotFoundError, PermissionDeniedError
from bloodnet.notifications import make_template
from bloodnet.users import active_users, normalize_email, require_active, require_facility

logger = logging.getLogger(__name__)


class OfferEngine:

    def __init__(self, store, dispatcher):
        self.store = store
        self.dispatcher = dispatcher

    def get_offer(self, offer_id):
        offer = self.store.get(BLOOD_OFFERS, offer_id)
        if not offer:
            raise NotFoundError(f"Blood offer not found: {offer_id}")
        return offer

    def post_offer(self, creator_email, blood_type, donation_type, units, message=''):
        """Create an Available offer and tell every other active facility"""
        creator = require_active(require_facility(self.store, creator_email))
        validation.blood_type(blood_type)
        validation.donation_type(donation_type)
        validation.positive_units(units)

        offer = self.store.insert_one(BLOOD_OFFERS, {
            'creatorEmail': creator['email'],
            'creatorName': creator.get('name'),
            'bloodType': blood_type,
            'donationType': donation_type,
            'units': units,
            'message': message or '',
            'date': datetime.now().isoformat(),
            'status': OFFER_AVAILABLE,
        })

        name = creator.get('name') or creator['email']
        text = f"{name} is offering {units} unit(s) of {blood_type} {donation_type.replace('_', ' ')}."
        if message:
            text = f"{text} {message}"
        template = make_template(NOTIFY_OFFER, creator, text, blood_type=blood_type,
                                 units=units, offer_id=offer['id'])
        facilities = active_users(self.store, roles=FACILITY_ROLES, exclude=creator['email'])
        self.dispatcher.fan_out(template, [f['email'] for f in facilities])
        logger.info("Offer %s posted by %s", offer['id'], creator['email'])
        return offer

    def claim_offer(self, offer_id, claimant_email):
        """
        Take an offer. Returns {'success': True, 'offer': ...} for the winner and
        {'success': False, 'status': <current status>} when someone got there first.
        """
        claimant = require_active(require_facility(self.store, claimant_email))
        offer = self.get_offer(offer_id)
        if offer['creatorEmail'] == claimant['email']:
            raise PermissionDeniedError("Cannot claim your own offer")

        claimed = self.store.update_one_if(BLOOD_OFFERS, offer_id, {'status': OFFER_AVAILABLE}, {
            'status': OFFER_CLAIMED,
            'claimedByEmail': claimant['email'],
            'claimedByName': claimant.get('name'),
            'claimedAt': datetime.now().isoformat(),
        })
        if not claimed:
            current = self.get_offer(offer_id)
            logger.info("Claim of %s by %s lost: offer is %s", offer_id, claimant['email'],
                        current['status'])
            return {'success': False, 'message': 'Offer not available.',
                    'status': current['status'], 'claimedByEmail': current.get('claimedByEmail')}

        offer = self.get_offer(offer_id)
        self.dispatcher.delete_for_offer(offer_id, NOTIFY_OFFER)
        name = claimant.get('name') or claimant['email']
        template = make_template(
            NOTIFY_CLAIM, claimant,
            f"{name} has claimed your offer of {offer['units']} unit(s) of {offer['bloodType']}.",
            blood_type=offer['bloodType'], units=offer['units'], offer_id=offer_id,
        )
        self.dispatcher.fan_out(template, [offer['creatorEmail']])
        logger.info("Offer %s claimed by %s", offer_id, claimant['email'])
        return {'success': True, 'message': 'Offer successfully claimed!', 'offer': offer,
                'status': OFFER_CLAIMED}

    def cancel_offer(self, offer_id, owner_email):
        """Only the creator may withdraw an offer, and only while it is still Available"""
        owner_email = normalize_email(owner_email)
        offer = self.get_offer(offer_id)
        if offer['creatorEmail'] != owner_email:
            raise PermissionDeniedError("Only the creator can cancel this offer")
        deleted = self.store.delete_one(BLOOD_OFFERS, offer_id, {
            'status': OFFER_AVAILABLE,
            'creatorEmail': owner_email,
        })
        if not deleted:
            current = self.get_offer(offer_id)
            raise ConflictError(f"Offer {offer_id} is {current['status']} and cannot be cancelled")
        self.dispatcher.delete_for_offer(offer_id)
        logger.info("Offer %s cancelled by %s", offer_id, owner_email)
        return {'success': True, 'message': 'Offer has been cancelled.'}

    def list_offers(self, status=None):
        filter_ = {'status': status} if status else None
        return self.store.find(BLOOD_OFFERS, filter_, sort=[('date', -1)])
