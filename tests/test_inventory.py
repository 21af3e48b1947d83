"""Tests for facility inventory and the summary aggregator."""

import threading

import pytest

from bloodnet import inventory
from bloodnet.constants import BLOOD_UNITS, USERS
from bloodnet.store import MemoryStore
from bloodnet.users import register_user
from bloodnet.errors import NotFoundError, PermissionDeniedError, ValidationError

BANK = "stock@centralbank.org"


def unit(**overrides):
    data = {"bloodType": "A+", "donationType": "whole_blood", "units": 3,
            "collectionDate": "2024-01-01"}
    data.update(overrides)
    return data


def test_aggregator_sums_by_donation_type(store, people) -> None:
    """Test the A+/O- example: 3 whole blood + 2 plasma."""
    inventory.add_unit(store, BANK, unit())
    inventory.add_unit(store, BANK, unit(bloodType="O-", donationType="plasma", units=2))

    summary, blood_types = inventory.recompute(store, BANK)

    assert summary == {"whole_blood": 3, "plasma": 2, "red_blood_cells": 0}
    assert set(blood_types) == {"A+", "O-"}
    bank = store.get(USERS, BANK)
    assert bank["inventorySummary"] == summary
    assert set(bank["availableBloodTypes"]) == {"A+", "O-"}


def test_recompute_is_idempotent(store, people) -> None:
    inventory.add_unit(store, BANK, unit())
    first = inventory.recompute(store, BANK)
    second = inventory.recompute(store, BANK)
    assert first == second


def test_add_unit_derives_expiration(store, people) -> None:
    added = inventory.add_unit(store, BANK, unit(donationType="plasma"))

    assert added["expirationDate"].startswith("2024-12-31")
    assert added["location"] == BANK


def test_client_cannot_supply_expiration_or_location(store, people) -> None:
    with pytest.raises(ValidationError, match="derived"):
        inventory.add_unit(store, BANK, unit(expirationDate="2030-01-01"))
    with pytest.raises(ValidationError, match="location"):
        inventory.add_unit(store, BANK, unit(location="ward@cityhospital.org"))


@pytest.mark.parametrize("units", [0, -2, 1.5, "3", True])
def test_units_must_be_positive_integers(store, people, units) -> None:
    with pytest.raises(ValidationError):
        inventory.add_unit(store, BANK, unit(units=units))


def test_only_facilities_hold_inventory(store, people) -> None:
    with pytest.raises(PermissionDeniedError):
        inventory.add_unit(store, "dana@example.com", unit())
    with pytest.raises(NotFoundError):
        inventory.add_unit(store, "ghost@bank.org", unit())


def test_update_recomputes_expiration_and_summary(store, people) -> None:
    added = inventory.add_unit(store, BANK, unit())

    updated = inventory.update_unit(store, added["id"], {"donationType": "plasma", "units": 5})

    assert updated["expirationDate"].startswith("2024-12-31")
    assert store.get(USERS, BANK)["inventorySummary"] == {
        "whole_blood": 0, "plasma": 5, "red_blood_cells": 0}


def test_update_collection_date_moves_expiration(store, people) -> None:
    added = inventory.add_unit(store, BANK, unit())

    updated = inventory.update_unit(store, added["id"], {"collectionDate": "2024-03-01"})

    assert updated["expirationDate"].startswith("2024-04-12")


def test_other_facility_cannot_edit(store, people) -> None:
    added = inventory.add_unit(store, BANK, unit())
    with pytest.raises(PermissionDeniedError):
        inventory.update_unit(store, added["id"], {"units": 1}, owner_email="stock@northbank.org")
    with pytest.raises(PermissionDeniedError):
        inventory.delete_unit(store, added["id"], owner_email="stock@northbank.org")


def test_delete_updates_summary(store, people) -> None:
    added = inventory.add_unit(store, BANK, unit())
    inventory.add_unit(store, BANK, unit(bloodType="B-", donationType="red_blood_cells", units=1))

    assert inventory.delete_unit(store, added["id"]) == {"deletedCount": 1}
    assert inventory.delete_unit(store, added["id"]) == {"deletedCount": 0}

    bank = store.get(USERS, BANK)
    assert bank["inventorySummary"] == {"whole_blood": 0, "plasma": 0, "red_blood_cells": 1}
    assert bank["availableBloodTypes"] == ["B-"]


def test_all_inventory_joins_facility(store, people) -> None:
    inventory.add_unit(store, BANK, unit())
    inventory.add_unit(store, "ward@cityhospital.org", unit(units=1))

    rows = inventory.all_inventory(store)

    assert {r["locationName"] for r in rows} == {"Central Blood Bank", "City Hospital"}
    assert inventory.total_units(store) == 4


class SlowFirstReadStore(MemoryStore):
    """The first unit read takes its snapshot, then waits for `release`."""

    def __init__(self):
        super().__init__()
        self.first_read = threading.Event()
        self.release = threading.Event()

    def find(self, collection, filter_=None, sort=None, limit=None):
        docs = super().find(collection, filter_, sort, limit)
        if collection == BLOOD_UNITS and not self.first_read.is_set():
            self.first_read.set()
            self.release.wait(timeout=5)
        return docs


def test_concurrent_additions_keep_summary_consistent() -> None:
    """Test that a summary built from a stale read is corrected, not kept."""
    store = SlowFirstReadStore()
    register_user(store, {"email": BANK, "role": "Blood Bank", "name": "Central Blood Bank"})

    slow = threading.Thread(target=inventory.add_unit, args=(store, BANK, unit()))
    slow.start()
    assert store.first_read.wait(timeout=5)
    inventory.add_unit(store, BANK, unit(bloodType="O-", donationType="plasma", units=2))
    store.release.set()
    slow.join()

    bank = store.get(USERS, BANK)
    assert bank["inventorySummary"] == {"whole_blood": 3, "plasma": 2, "red_blood_cells": 0}
    assert bank["availableBloodTypes"] == ["A+", "O-"]
