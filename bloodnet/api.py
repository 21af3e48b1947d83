"""
JSON API over the engine.

Authentication happens in front of this blueprint: the login layer stores the
authenticated email in session['email']. Handlers only read it.
"""
from flask import Blueprint, current_app, jsonify, request, session

from bloodnet import donations, inventory, transfers, users, validation
from bloodnet.constants import ROLE_ADMIN
from bloodnet.errors import (BloodNetError, ConflictError, NotFoundError, PermissionDeniedError,
                             StorageError, ValidationError)

api = Blueprint('api', __name__, url_prefix='/api')

STATUS_CODES = {
    ValidationError: 400,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 503,
}


class NotAuthenticated(Exception):
    pass


def engine():
    return current_app.extensions['bloodnet']


def current_email():
    email = users.normalize_email(session.get('email'))
    if not email:
        raise NotAuthenticated()
    return email


def require_admin():
    user = users.require_user(engine().store, current_email())
    if user.get('role') != ROLE_ADMIN:
        raise PermissionDeniedError("Admin only")
    return user


def payload():
    return request.get_json(silent=True) or {}


# ============== ERROR HANDLERS ==============

@api.errorhandler(BloodNetError)
def engine_error(e):
    status = next((code for kind, code in STATUS_CODES.items() if isinstance(e, kind)), 500)
    if status >= 500:
        current_app.logger.error("Request to %s failed: %s", request.path, e.message)
    return jsonify({'success': False, 'message': e.message}), status


@api.errorhandler(NotAuthenticated)
def not_authenticated(e):
    return jsonify({'success': False, 'message': 'Login required'}), 401


# ============== USERS ==============

@api.route('/users', methods=['POST'])
def register():
    user = users.register_user(engine().store, payload())
    return jsonify({'success': True, 'user': user}), 201


@api.route('/users', methods=['GET'])
def list_all_users():
    require_admin()
    return jsonify(users.list_users(engine().store))


@api.route('/users/me', methods=['GET', 'PATCH'])
def my_profile():
    store = engine().store
    if request.method == 'PATCH':
        return jsonify(users.update_profile(store, current_email(), payload()))
    return jsonify(users.require_user(store, current_email()))


@api.route('/users/<email>/status', methods=['POST'])
def user_status(email):
    require_admin()
    return jsonify(users.set_status(engine().store, email, payload().get('status')))


@api.route('/users/<email>', methods=['DELETE'])
def remove_user(email):
    require_admin()
    return jsonify(users.delete_user(engine().store, email,
                                     admin_email=current_app.config.get('ADMIN_EMAIL')))


# ============== BLOOD REQUESTS ==============

@api.route('/requests', methods=['POST'])
def create_request():
    data = payload()
    created = engine().requests.create_broadcast_request(
        current_email(), data.get('bloodType'), data.get('donationType'),
        data.get('units'), data.get('urgency'),
    )
    return jsonify({'success': True, 'request': created}), 201


@api.route('/requests/direct', methods=['POST'])
def create_direct_request():
    data = payload()
    created = engine().requests.create_direct_request(
        current_email(), data.get('recipient'), data.get('bloodType'),
        data.get('donationType'), data.get('units'), data.get('urgency'),
    )
    return jsonify({'success': True, 'request': created,
                    'message': f"Request sent to {created['recipient']}"}), 201


@api.route('/requests/emergency', methods=['POST'])
def create_emergency():
    created = engine().requests.create_emergency_broadcast(current_email(),
                                                           payload().get('message'))
    return jsonify({'success': True, 'request': created,
                    'message': 'Emergency broadcast sent to all users.'}), 201


@api.route('/requests', methods=['GET'])
def my_requests():
    return jsonify(engine().requests.requests_for_user(current_email()))


@api.route('/requests/<request_id>/accept', methods=['POST'])
def accept_request(request_id):
    accepted = engine().requests.accept_request(request_id, current_email())
    return jsonify({'success': True, 'request': accepted,
                    'message': 'Response sent and request status updated.'})


@api.route('/requests/<request_id>/decline', methods=['POST'])
def decline_request(request_id):
    data = payload()
    validation.require_fields(data, 'notificationId')
    result = engine().requests.decline_request(data.get('notificationId'), request_id,
                                               current_email(), data.get('reason', ''))
    return jsonify(result)


@api.route('/requests/<request_id>/complete', methods=['POST'])
def complete_request(request_id):
    completed = engine().requests.complete_request(request_id, current_email())
    return jsonify({'success': True, 'request': completed})


@api.route('/requests/<request_id>', methods=['DELETE'])
def cancel_request(request_id):
    result = engine().requests.cancel_request(request_id, current_email())
    return jsonify({'success': True, **result})


# ============== NOTIFICATIONS ==============

@api.route('/notifications')
def my_notifications():
    return jsonify(engine().dispatcher.list_for_user(current_email()))


@api.route('/notifications/<notification_id>/read', methods=['POST'])
def mark_read(notification_id):
    dispatcher = engine().dispatcher
    if dispatcher.get(notification_id)['recipientEmail'] != current_email():
        raise PermissionDeniedError("Notification belongs to another user")
    return jsonify(dispatcher.mark_read(notification_id))


# ============== OFFERS ==============

@api.route('/offers', methods=['GET'])
def list_offers():
    return jsonify(engine().offers.list_offers(request.args.get('status')))


@api.route('/offers', methods=['POST'])
def post_offer():
    data = payload()
    offer = engine().offers.post_offer(current_email(), data.get('bloodType'),
                                       data.get('donationType'), data.get('units'),
                                       data.get('message', ''))
    return jsonify({'success': True, 'offer': offer}), 201


@api.route('/offers/<offer_id>/claim', methods=['POST'])
def claim_offer(offer_id):
    result = engine().offers.claim_offer(offer_id, current_email())
    return jsonify(result), 200 if result['success'] else 409


@api.route('/offers/<offer_id>', methods=['DELETE'])
def cancel_offer(offer_id):
    return jsonify(engine().offers.cancel_offer(offer_id, current_email()))


# ============== INVENTORY ==============

@api.route('/inventory', methods=['GET'])
def my_inventory():
    return jsonify(inventory.list_units(engine().store, current_email()))


@api.route('/inventory', methods=['POST'])
def add_unit():
    unit = inventory.add_unit(engine().store, current_email(), payload())
    return jsonify({'success': True, 'unit': unit}), 201


@api.route('/inventory/<unit_id>', methods=['PATCH'])
def update_unit(unit_id):
    unit = inventory.update_unit(engine().store, unit_id, payload(), owner_email=current_email())
    return jsonify({'success': True, 'unit': unit})


@api.route('/inventory/<unit_id>', methods=['DELETE'])
def delete_unit(unit_id):
    return jsonify(inventory.delete_unit(engine().store, unit_id, owner_email=current_email()))


@api.route('/inventory/all')
def all_inventory():
    current_email()
    return jsonify(inventory.all_inventory(engine().store))


@api.route('/inventory/matches')
def inventory_matches():
    require_admin()
    return jsonify(engine().inventory_matches())


@api.route('/inventory/estimate-expiration', methods=['POST'])
def estimate_expiration():
    data = payload()
    if not data.get('collectionDate'):
        raise ValidationError("collectionDate is required")
    return jsonify(engine().ai.estimate_expiration(
        data['collectionDate'], data.get('bloodType'), data.get('storageConditions', ''),
        data.get('donationType'),
    ))


# ============== DONATION HISTORY ==============

@api.route('/donations', methods=['GET'])
def my_donations():
    store = engine().store
    email = current_email()
    return jsonify({
        'history': donations.donation_history(store, email),
        'eligibility': donations.eligibility(store, email),
    })


@api.route('/donations', methods=['POST'])
def add_donation():
    donation = donations.add_donation(engine().store, current_email(), payload())
    return jsonify({'success': True, 'donation': donation}), 201


@api.route('/donations/<donation_id>', methods=['PATCH'])
def update_donation(donation_id):
    donation = donations.update_donation(engine().store, donation_id, payload(),
                                         donor_email=current_email())
    return jsonify({'success': True, 'donation': donation})


@api.route('/donations/<donation_id>', methods=['DELETE'])
def delete_donation(donation_id):
    return jsonify(donations.delete_donation(engine().store, donation_id,
                                             donor_email=current_email()))


# ============== TRANSFERS ==============

@api.route('/transfers', methods=['GET'])
def my_transfers():
    store = engine().store
    email = current_email()
    return jsonify({
        'sent': transfers.sent_transfers(store, email),
        'received': transfers.received_transfers(store, email),
    })


@api.route('/transfers', methods=['POST'])
def add_transfer():
    data = {**payload(), 'source': current_email()}
    return jsonify({'success': True, 'transfer': transfers.add_transfer(engine().store, data)}), 201


@api.route('/transfers/<transfer_id>', methods=['PATCH'])
def edit_transfer(transfer_id):
    require_admin()
    return jsonify(transfers.update_transfer(engine().store, transfer_id, payload()))


# ============== STATISTICS ==============

@api.route('/statistics')
def statistics():
    """System-wide counters for the admin dashboard"""
    return jsonify(engine().system_stats())


@api.route('/statistics/history')
def history():
    require_admin()
    return jsonify(engine().historical_data())
