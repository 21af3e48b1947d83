"""
Request Lifecycle Manager.

BloodRequest states:

    Pending --accept--> In Progress --complete--> Fulfilled
    Pending --decline (direct requests only)--> Declined
    any     --cancel--> (deleted)

Broadcast requests collect any number of per-responder declines and stay
Pending. The Pending -> In Progress step is a conditional update on the stored
status, so when several responders accept at once exactly one wins.
"""
import logging
from datetime import datetime

from bloodnet import donations, validation
from bloodnet.constants import (BLOOD_REQUESTS, NOT_APPLICABLE, NOTIFY_DECLINE, NOTIFY_EMERGENCY,
                                NOTIFY_REQUEST, NOTIFY_RESPONSE, REQUEST_DECLINED,
                                REQUEST_FULFILLED, REQUEST_IN_PROGRESS, REQUEST_PENDING,
                                RESPONDER_ROLES, ROLE_ADMIN, WHOLE_BLOOD)
from bloodnet.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from bloodnet.notifications import make_template
from bloodnet.users import active_users, require_active, require_user

logger = logging.getLogger(__name__)

SOLICITATION_TYPES = (NOTIFY_REQUEST, NOTIFY_EMERGENCY)


def display_name(user):
    return user.get('name') or user['email']


def describe(units, blood_type, donation_type):
    """e.g. '2 unit(s) of O- whole blood'"""
    return f"{units} unit(s) of {blood_type} {donation_type.replace('_', ' ')}"


class RequestManager:

    def __init__(self, store, dispatcher):
        self.store = store
        self.dispatcher = dispatcher

    # ============== CREATION ==============

    def _insert(self, requester, blood_type, donation_type, units, urgency, **extra):
        record = {
            'requester': requester['email'],
            'requesterName': requester.get('name'),
            'bloodType': blood_type,
            'donationType': donation_type,
            'units': units,
            'urgency': urgency,
            'status': REQUEST_PENDING,
            'date': datetime.now().isoformat(),
            'emergency': False,
            'direct': False,
        }
        record.update(extra)
        return self.store.insert_one(BLOOD_REQUESTS, record)

    def _validate(self, blood_type, donation_type, units, urgency):
        validation.blood_type(blood_type)
        validation.donation_type(donation_type)
        validation.positive_units(units)
        validation.urgency(urgency)

    def create_broadcast_request(self, requester_email, blood_type, donation_type, units, urgency):
        """
        Create a Pending request and solicit every active hospital, blood bank
        and donor who is not deferred after a recent donation
        """
        requester = require_active(require_user(self.store, requester_email))
        self._validate(blood_type, donation_type, units, urgency)

        request = self._insert(requester, blood_type, donation_type, units, urgency)
        deferred = donations.deferred_donors(self.store)
        responders = [u for u in active_users(self.store, roles=RESPONDER_ROLES,
                                              exclude=requester['email'])
                      if u['email'] not in deferred]
        template = make_template(
            NOTIFY_REQUEST, requester,
            f"{display_name(requester)} has requested {describe(units, blood_type, donation_type)}.",
            blood_type=blood_type, units=units, urgency=urgency, request_id=request['id'],
        )
        self.dispatcher.fan_out(template, [u['email'] for u in responders])
        logger.info("Broadcast request %s from %s for %s", request['id'], requester['email'],
                    describe(units, blood_type, donation_type))
        return request

    def create_direct_request(self, requester_email, recipient_email, blood_type, donation_type,
                              units, urgency):
        """A request addressed to a single responder; it is still a real BloodRequest"""
        requester = require_active(require_user(self.store, requester_email))
        recipient = require_active(require_user(self.store, recipient_email))
        if recipient['email'] == requester['email']:
            raise ValidationError("Cannot send a request to yourself")
        self._validate(blood_type, donation_type, units, urgency)

        request = self._insert(requester, blood_type, donation_type, units, urgency,
                               direct=True, recipient=recipient['email'])
        template = make_template(
            NOTIFY_REQUEST, requester,
            f"{display_name(requester)} has sent you a direct request for "
            f"{describe(units, blood_type, donation_type)}.",
            blood_type=blood_type, units=units, urgency=urgency, request_id=request['id'],
        )
        self.dispatcher.fan_out(template, [recipient['email']])
        logger.info("Direct request %s from %s to %s", request['id'], requester['email'],
                    recipient['email'])
        return request

    def create_emergency_broadcast(self, requester_email, message):
        """Zero-unit Critical request used as the anchor for an emergency alert to everyone"""
        requester = require_active(require_user(self.store, requester_email))
        if not (message or '').strip():
            raise ValidationError("message is required")

        request = self._insert(requester, NOT_APPLICABLE, WHOLE_BLOOD, 0, 'Critical',
                               emergency=True, message=message)
        template = make_template(NOTIFY_EMERGENCY, requester, message, units=0,
                                 urgency='Critical', request_id=request['id'])
        recipients = active_users(self.store, exclude=requester['email'])
        delivered = self.dispatcher.fan_out(template, [u['email'] for u in recipients])
        logger.warning("Emergency broadcast %s from %s reached %d user(s)", request['id'],
                       requester['email'], len(delivered))
        return request

    # ============== RESPONSES ==============

    def get_request(self, request_id):
        request = self.store.get(BLOOD_REQUESTS, request_id)
        if not request:
            raise NotFoundError(f"Blood request not found: {request_id}")
        return request

    def _transition(self, request_id, expected_status, patch):
        """Conditional status change; raises if the stored status moved on"""
        if self.store.update_one_if(BLOOD_REQUESTS, request_id, {'status': expected_status}, patch):
            return self.get_request(request_id)
        current = self.get_request(request_id)
        raise ConflictError(f"Request {request_id} is {current['status']}, not {expected_status}")

    def accept_request(self, request_id, responder_email):
        """First responder to accept takes the request; later attempts get ConflictError"""
        responder = require_active(require_user(self.store, responder_email))
        request = self.get_request(request_id)
        if request['requester'] == responder['email']:
            raise PermissionDeniedError("Cannot accept your own request")
        if request.get('direct') and request.get('recipient') != responder['email']:
            raise PermissionDeniedError("This request was addressed to someone else")

        request = self._transition(request_id, REQUEST_PENDING, {
            'status': REQUEST_IN_PROGRESS,
            'responder': responder['email'],
            'respondedAt': datetime.now().isoformat(),
        })
        # other responders must stop seeing it as actionable
        self.dispatcher.delete_for_request(request_id, SOLICITATION_TYPES)

        template = make_template(
            NOTIFY_RESPONSE, responder,
            f"{display_name(responder)} ({responder['role']}) has accepted your blood request.",
            blood_type=request['bloodType'], units=request['units'],
            urgency=request['urgency'], request_id=request_id,
        )
        self.dispatcher.fan_out(template, [request['requester']])
        logger.info("Request %s accepted by %s", request_id, responder['email'])
        return request

    def decline_request(self, notification_id, request_id, responder_email, reason=''):
        """
        Withdraw one responder's solicitation and tell the requester why.
        Broadcasts stay Pending; a direct request has only one possible
        responder, so it becomes Declined.
        """
        responder = require_active(require_user(self.store, responder_email))
        if not notification_id:
            raise ValidationError("notificationId is required")
        notification = self.dispatcher.get(notification_id)
        if notification['recipientEmail'] != responder['email']:
            raise PermissionDeniedError("Notification belongs to another user")
        if notification['type'] not in SOLICITATION_TYPES:
            raise ValidationError(f"A {notification['type']} notification cannot be declined")
        if notification.get('requestId') != request_id:
            raise ValidationError("Notification does not refer to this request")
        request = self.get_request(request_id)

        if request.get('direct'):
            request = self._transition(request_id, REQUEST_PENDING, {
                'status': REQUEST_DECLINED,
                'responder': responder['email'],
            })
        self.dispatcher.delete(notification_id)

        reason = (reason or '').strip() or 'No reason given'
        template = make_template(
            NOTIFY_DECLINE, responder,
            f"{display_name(responder)} ({responder['role']}) has declined your request. "
            f"Reason: {reason}",
            blood_type=request['bloodType'], units=request['units'],
            urgency=request['urgency'], request_id=request_id,
        )
        self.dispatcher.fan_out(template, [request['requester']])
        logger.info("Request %s declined by %s", request_id, responder['email'])
        return {'success': True, 'message': 'Decline notification sent.',
                'status': request['status']}

    def complete_request(self, request_id, actor_email):
        """The requester confirms the blood arrived: In Progress -> Fulfilled"""
        actor = require_user(self.store, actor_email)
        request = self.get_request(request_id)
        if request['requester'] != actor['email']:
            raise PermissionDeniedError("Only the requester can mark a request fulfilled")
        request = self._transition(request_id, REQUEST_IN_PROGRESS, {
            'status': REQUEST_FULFILLED,
            'fulfilledAt': datetime.now().isoformat(),
        })
        logger.info("Request %s fulfilled", request_id)
        return request

    def cancel_request(self, request_id, actor_email=None):
        """
        Delete the request and every notification that points at it.
        Cancelling after acceptance is allowed as best-effort cleanup.
        """
        request = self.store.get(BLOOD_REQUESTS, request_id)
        if request and actor_email is not None:
            actor = require_user(self.store, actor_email)
            if request['requester'] != actor['email'] and actor.get('role') != ROLE_ADMIN:
                raise PermissionDeniedError("Only the requester can cancel this request")
        if request and request['status'] != REQUEST_PENDING:
            logger.warning("Cancelling request %s while %s (responder %s)", request_id,
                           request['status'], request.get('responder'))

        deleted = self.store.delete_one(BLOOD_REQUESTS, request_id)
        cleared = self.dispatcher.delete_for_request(request_id)
        return {'deletedCount': 1 if deleted else 0, 'notificationsDeleted': cleared}

    # ============== QUERIES ==============

    def requests_for_user(self, email):
        return self.store.find(BLOOD_REQUESTS, {'requester': email}, sort=[('date', -1)])

    def open_requests(self):
        return self.store.find(BLOOD_REQUESTS, {'status': REQUEST_PENDING}, sort=[('date', -1)])

    def recent_requests(self, limit=500):
        return self.store.find(BLOOD_REQUESTS, sort=[('date', -1)], limit=limit)
