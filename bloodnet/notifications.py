"""
Notification Dispatcher.

Notifications are best-effort: a failure to store or e-mail one recipient is
logged and skipped, it never undoes the state transition that triggered it.
"""
import logging
from datetime import datetime

from bloodnet.constants import (NOT_APPLICABLE, NOTIFICATIONS, NOTIFY_CLAIM, NOTIFY_DECLINE,
                                NOTIFY_EMERGENCY, NOTIFY_RESPONSE)
from bloodnet.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)

# Types worth an email on top of the in-app notification
MAILED_TYPES = (NOTIFY_RESPONSE, NOTIFY_DECLINE, NOTIFY_CLAIM, NOTIFY_EMERGENCY)

SUBJECTS = {
    NOTIFY_RESPONSE: 'Your blood request was accepted',
    NOTIFY_DECLINE: 'Your blood request was declined',
    NOTIFY_CLAIM: 'Your blood offer was claimed',
    NOTIFY_EMERGENCY: 'Emergency blood request',
}


def make_template(type_, sender, message, blood_type=NOT_APPLICABLE, units=0, urgency='Low',
                  request_id=None, offer_id=None):
    """Fields shared by every copy of one event; sender is the acting user"""
    template = {
        'type': type_,
        'requesterEmail': sender['email'],
        'requesterName': sender.get('name'),
        'requesterMobileNumber': sender.get('mobileNumber'),
        'message': message,
        'bloodType': blood_type,
        'units': units,
        'urgency': urgency,
    }
    if request_id:
        template['requestId'] = request_id
    if offer_id:
        template['offerId'] = offer_id
    return template


class NotificationDispatcher:

    def __init__(self, store, mailer=None, limit=50):
        self.store = store
        self.mailer = mailer
        self.limit = limit

    def notify(self, template, recipient_email):
        """Store one notification; returns None if it could not be stored"""
        notification = {
            **template,
            'recipientEmail': recipient_email,
            'date': datetime.now().isoformat(),
            'read': False,
        }
        try:
            saved = self.store.insert_one(NOTIFICATIONS, notification)
        except StorageError:
            logger.exception("Could not notify %s of %s", recipient_email, template['type'])
            return None
        try:
            self._mail(saved)
        except Exception:
            logger.exception("Could not email %s about %s", recipient_email, template['type'])
        return saved

    def fan_out(self, template, recipients):
        """One notification per recipient; the actor never notifies itself"""
        actor = template['requesterEmail']
        delivered = []
        for email in sorted(set(recipients)):
            if email == actor:
                continue
            saved = self.notify(template, email)
            if saved:
                delivered.append(saved)
        logger.info("Fanned out %s to %d recipient(s)", template['type'], len(delivered))
        return delivered

    def _mail(self, notification):
        if not self.mailer or notification['type'] not in MAILED_TYPES:
            return
        self.mailer.send_mail(
            notification['recipientEmail'],
            SUBJECTS[notification['type']],
            notification['message'],
        )

    # ============== QUERIES ==============

    def list_for_user(self, email, limit=None):
        """Newest first, bounded"""
        return self.store.find(NOTIFICATIONS, {'recipientEmail': email},
                               sort=[('date', -1)], limit=limit or self.limit)

    def get(self, notification_id):
        notification = self.store.get(NOTIFICATIONS, notification_id)
        if not notification:
            raise NotFoundError(f"Notification not found: {notification_id}")
        return notification

    def mark_read(self, notification_id):
        # read only ever moves false -> true, so repeating it is harmless
        if not self.store.update_one(NOTIFICATIONS, notification_id, {'read': True}):
            raise NotFoundError(f"Notification not found: {notification_id}")
        return {'success': True}

    # ============== CLEANUP ==============

    def _delete_many(self, filter_, type_):
        if type_:
            filter_['type'] = type_
        try:
            return self.store.delete_many(NOTIFICATIONS, filter_)
        except StorageError:
            logger.exception("Could not clear notifications matching %s", filter_)
            return 0

    def delete_for_request(self, request_id, type_=None):
        return self._delete_many({'requestId': request_id}, type_)

    def delete_for_offer(self, offer_id, type_=None):
        return self._delete_many({'offerId': offer_id}, type_)

    def delete(self, notification_id):
        return self.store.delete_one(NOTIFICATIONS, notification_id)
