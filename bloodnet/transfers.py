"""Transfer records: append-only log of units moved between facilities."""
import logging
from datetime import datetime

from bloodnet import validation
from bloodnet.constants import TRANSFERS
from bloodnet.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('source', 'destination', 'bloodType', 'donationType', 'units', 'date')


def _check(fields):
    if 'bloodType' in fields:
        validation.blood_type(fields['bloodType'])
    if 'donationType' in fields:
        validation.donation_type(fields['donationType'])
    if 'units' in fields:
        validation.positive_units(fields['units'])


def add_transfer(store, transfer):
    validation.require_fields(transfer, 'source', 'destination', 'bloodType', 'donationType',
                              'units')
    if transfer['source'] == transfer['destination']:
        raise ValidationError("source and destination must differ")
    _check(transfer)
    record = {k: transfer[k] for k in EDITABLE_FIELDS if k in transfer}
    record.setdefault('date', datetime.now().isoformat())
    saved = store.insert_one(TRANSFERS, record)
    logger.info("Transfer %s: %s unit(s) %s -> %s", saved['id'], saved['units'],
                saved['source'], saved['destination'])
    return saved


def update_transfer(store, transfer_id, changes):
    """Administrative correction of a transfer record"""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    _check(changes)
    if not changes or not store.update_one(TRANSFERS, transfer_id, changes):
        if not store.get(TRANSFERS, transfer_id):
            raise NotFoundError(f"Transfer not found: {transfer_id}")
    return store.get(TRANSFERS, transfer_id)


def sent_transfers(store, email):
    return store.find(TRANSFERS, {'source': email}, sort=[('date', -1)])


def received_transfers(store, email):
    return store.find(TRANSFERS, {'destination': email}, sort=[('date', -1)])
