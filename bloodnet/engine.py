"""Wires the store, dispatcher and managers together for one process."""
import logging

from bloodnet import inventory
from bloodnet.blood_requests import RequestManager
from bloodnet.constants import BLOOD_REQUESTS, BLOOD_UNITS, REQUEST_PENDING, TRANSFERS
from bloodnet.mailer import Mailer
from bloodnet.matching import AIServices
from bloodnet.notifications import NotificationDispatcher
from bloodnet.offers import OfferEngine
from bloodnet.store import create_store
from bloodnet.users import list_users

logger = logging.getLogger(__name__)


class BloodNet:

    def __init__(self, store, mailer=None, ai=None, notification_limit=50):
        self.store = store
        self.dispatcher = NotificationDispatcher(store, mailer=mailer, limit=notification_limit)
        self.requests = RequestManager(store, self.dispatcher)
        self.offers = OfferEngine(store, self.dispatcher)
        self.ai = ai or AIServices()

    @classmethod
    def from_config(cls, config, store=None):
        return cls(
            store or create_store(config),
            mailer=Mailer.from_config(config),
            notification_limit=config.NOTIFICATION_LIMIT,
        )

    def system_stats(self):
        return {
            'totalUsers': len(list_users(self.store)),
            'totalUnits': inventory.total_units(self.store),
            'openRequests': self.store.count(BLOOD_REQUESTS, {'status': REQUEST_PENDING}),
            'totalTransfers': self.store.count(TRANSFERS),
        }

    def historical_data(self, limit=500):
        """Recent requests and units, the input for demand forecasting"""
        units = self.store.find(BLOOD_UNITS, sort=[('collectionDate', -1)], limit=limit)
        return {'requests': self.requests.recent_requests(limit), 'inventory': units}

    def inventory_matches(self):
        """Run the matching service over open requests and all inventory"""
        result = self.ai.find_inventory_matches(self.requests.open_requests(),
                                                inventory.all_inventory(self.store))
        logger.debug("Matching service returned %s", result)
        return result
