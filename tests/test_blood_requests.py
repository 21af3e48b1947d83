"""Tests for the request lifecycle."""

import threading
from datetime import date

import pytest

from bloodnet import donations
from bloodnet.constants import BLOOD_REQUESTS, NOTIFICATIONS
from bloodnet.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from bloodnet.engine import BloodNet
from bloodnet.users import register_user, set_status

DONOR = "dana@example.com"
REQUESTER = "quinn@example.com"
HOSPITAL = "ward@cityhospital.org"
BANK = "stock@centralbank.org"


def notifications_for(net, email, type_=None):
    found = net.dispatcher.list_for_user(email)
    return [n for n in found if type_ is None or n["type"] == type_]


def broadcast(net, requester=REQUESTER, **overrides):
    args = {"blood_type": "O-", "donation_type": "whole_blood", "units": 2, "urgency": "High"}
    args.update(overrides)
    return net.requests.create_broadcast_request(requester, **args)


# ============================================================================
# Creation
# ============================================================================


def test_broadcast_reaches_responders_but_not_requester(net, people) -> None:
    """Test that donors and facilities are solicited and the requester is not."""
    request = broadcast(net)

    assert request["status"] == "Pending"
    recipients = {n["recipientEmail"] for n in net.store.find(NOTIFICATIONS, {"requestId": request["id"]})}
    assert recipients == {DONOR, HOSPITAL, BANK, "stock@northbank.org"}
    note = notifications_for(net, DONOR)[0]
    assert note["message"] == "Quinn has requested 2 unit(s) of O- whole blood."
    assert note["requesterMobileNumber"] == "555-0102"


def test_facility_request_skips_itself(net, people) -> None:
    request = broadcast(net, requester=HOSPITAL, blood_type="AB+")

    recipients = {n["recipientEmail"] for n in net.store.find(NOTIFICATIONS, {"requestId": request["id"]})}
    assert HOSPITAL not in recipients
    assert REQUESTER not in recipients


def test_recent_donors_are_not_solicited(net, people) -> None:
    """Test that a donor inside the donation gap is skipped by broadcasts only."""
    donations.add_donation(net.store, DONOR, {"date": date.today().isoformat(),
                                              "location": "City Hospital", "units": 1})

    request = broadcast(net)

    recipients = {n["recipientEmail"] for n in net.store.find(NOTIFICATIONS, {"requestId": request["id"]})}
    assert DONOR not in recipients
    assert HOSPITAL in recipients
    direct = net.requests.create_direct_request(REQUESTER, DONOR, "O-", "whole_blood", 1, "Low")
    assert notifications_for(net, DONOR)[0]["requestId"] == direct["id"]


def test_banned_users_are_not_solicited(net, people) -> None:
    set_status(net.store, DONOR, "banned")

    broadcast(net)

    assert notifications_for(net, DONOR) == []


def test_banned_user_cannot_request(net, people) -> None:
    set_status(net.store, REQUESTER, "banned")
    with pytest.raises(PermissionDeniedError):
        broadcast(net)


@pytest.mark.parametrize("overrides", [
    {"units": 0},
    {"units": -1},
    {"blood_type": "Z+"},
    {"donation_type": "platelets"},
    {"urgency": "Whenever"},
])
def test_invalid_requests_rejected(net, people, overrides) -> None:
    with pytest.raises(ValidationError):
        broadcast(net, **overrides)
    assert net.store.count(BLOOD_REQUESTS) == 0


def test_direct_request_is_a_real_request(net, people) -> None:
    request = net.requests.create_direct_request(REQUESTER, DONOR, "O-", "whole_blood", 1, "Medium")

    assert request["direct"] is True
    assert request["recipient"] == DONOR
    assert net.store.get(BLOOD_REQUESTS, request["id"])["status"] == "Pending"
    assert [n["recipientEmail"] for n in net.store.find(NOTIFICATIONS)] == [DONOR]


def test_direct_request_to_self_rejected(net, people) -> None:
    with pytest.raises(ValidationError):
        net.requests.create_direct_request(REQUESTER, REQUESTER, "A+", "plasma", 1, "Low")


def test_emergency_broadcast_reaches_everyone(net, people, mailer) -> None:
    request = net.requests.create_emergency_broadcast(HOSPITAL, "Mass casualty event, all types needed")

    assert request["emergency"] is True
    assert request["units"] == 0
    assert request["urgency"] == "Critical"
    emergencies = net.store.find(NOTIFICATIONS, {"type": "emergency"})
    assert {n["recipientEmail"] for n in emergencies} == {DONOR, REQUESTER, BANK, "stock@northbank.org"}
    assert net.store.count(NOTIFICATIONS, {"type": "request"}) == 0
    assert len(mailer.sent) == 4


def test_emergency_needs_message(net, people) -> None:
    with pytest.raises(ValidationError):
        net.requests.create_emergency_broadcast(HOSPITAL, "   ")


# ============================================================================
# Accept / decline
# ============================================================================


def test_end_to_end_accept(net, people, mailer) -> None:
    """Test Q asks, D accepts, everyone else's solicitation disappears."""
    request = broadcast(net)

    accepted = net.requests.accept_request(request["id"], DONOR)

    assert accepted["status"] == "In Progress"
    assert accepted["responder"] == DONOR
    assert net.store.count(NOTIFICATIONS, {"requestId": request["id"], "type": "request"}) == 0
    response = notifications_for(net, REQUESTER, "response")
    assert len(response) == 1
    assert response[0]["message"] == "Dana (Donor) has accepted your blood request."
    assert response[0]["requesterMobileNumber"] == "555-0101"
    assert mailer.sent[-1]["to"] == REQUESTER


def test_second_accept_conflicts(net, people) -> None:
    request = broadcast(net)
    net.requests.accept_request(request["id"], DONOR)

    with pytest.raises(ConflictError):
        net.requests.accept_request(request["id"], BANK)
    assert net.requests.get_request(request["id"])["responder"] == DONOR


def test_concurrent_accepts_have_one_winner(net, people) -> None:
    """Test that racing responders produce exactly one In Progress transition."""
    extra = [register_user(net.store, {"email": f"donor{i}@example.com", "role": "Donor"})["email"]
             for i in range(6)]
    responders = [DONOR, HOSPITAL, BANK] + extra
    request = broadcast(net)
    barrier = threading.Barrier(len(responders))
    winners, conflicts = [], []

    def respond(email):
        barrier.wait()
        try:
            net.requests.accept_request(request["id"], email)
            winners.append(email)
        except ConflictError:
            conflicts.append(email)

    threads = [threading.Thread(target=respond, args=(email,)) for email in responders]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(winners) == 1
    assert len(conflicts) == len(responders) - 1
    stored = net.requests.get_request(request["id"])
    assert stored["responder"] == winners[0]
    assert len(notifications_for(net, REQUESTER, "response")) == 1


def test_cannot_accept_own_request(net, people) -> None:
    request = broadcast(net)
    with pytest.raises(PermissionDeniedError):
        net.requests.accept_request(request["id"], REQUESTER)


def test_direct_request_only_accepted_by_recipient(net, people) -> None:
    request = net.requests.create_direct_request(REQUESTER, DONOR, "O-", "whole_blood", 1, "Medium")

    with pytest.raises(PermissionDeniedError):
        net.requests.accept_request(request["id"], BANK)
    assert net.requests.accept_request(request["id"], DONOR)["status"] == "In Progress"


def test_accept_unknown_request(net, people) -> None:
    with pytest.raises(NotFoundError):
        net.requests.accept_request("BR-NOPE", DONOR)


def test_decline_broadcast_stays_pending(net, people) -> None:
    request = broadcast(net)
    note = notifications_for(net, BANK)[0]

    result = net.requests.decline_request(note["id"], request["id"], BANK, "Out of stock")

    assert result["status"] == "Pending"
    assert notifications_for(net, BANK) == []
    decline = notifications_for(net, REQUESTER, "decline")[0]
    assert decline["message"].endswith("Reason: Out of stock")
    # others can still accept
    assert net.requests.accept_request(request["id"], DONOR)["status"] == "In Progress"


def test_decline_direct_request(net, people) -> None:
    request = net.requests.create_direct_request(REQUESTER, DONOR, "O-", "whole_blood", 1, "Low")
    note = notifications_for(net, DONOR)[0]

    result = net.requests.decline_request(note["id"], request["id"], DONOR, "")

    assert result["status"] == "Declined"
    assert "No reason given" in notifications_for(net, REQUESTER, "decline")[0]["message"]
    with pytest.raises(ConflictError):
        net.requests.accept_request(request["id"], DONOR)


def test_decline_someone_elses_notification(net, people) -> None:
    request = broadcast(net)
    note = notifications_for(net, BANK)[0]

    with pytest.raises(PermissionDeniedError):
        net.requests.decline_request(note["id"], request["id"], DONOR)


def test_banned_responder_cannot_decline(net, people) -> None:
    request = broadcast(net)
    note = notifications_for(net, BANK)[0]
    set_status(net.store, BANK, "banned")

    with pytest.raises(PermissionDeniedError):
        net.requests.decline_request(note["id"], request["id"], BANK, "busy")
    assert net.dispatcher.get(note["id"])


def test_only_solicitations_can_be_declined(net, people) -> None:
    """Test that a response notification cannot be turned into a decline."""
    request = broadcast(net)
    net.requests.accept_request(request["id"], DONOR)
    response = notifications_for(net, REQUESTER, "response")[0]

    with pytest.raises(ValidationError, match="response"):
        net.requests.decline_request(response["id"], request["id"], REQUESTER, "changed my mind")
    assert notifications_for(net, DONOR, "decline") == []


def test_decline_needs_notification_id(net, people) -> None:
    request = broadcast(net)
    with pytest.raises(ValidationError, match="notificationId"):
        net.requests.decline_request(None, request["id"], BANK)


class FailingMailer:
    def send_mail(self, to, subject, text, html=None):
        raise ValueError("Header values may not contain linefeed or carriage return characters")


def test_mail_failure_does_not_undo_accept(store, people) -> None:
    """Test that the accept succeeds and notifies even when email blows up."""
    net = BloodNet(store, mailer=FailingMailer())
    request = broadcast(net)

    accepted = net.requests.accept_request(request["id"], DONOR)

    assert accepted["status"] == "In Progress"
    assert len(notifications_for(net, REQUESTER, "response")) == 1


# ============================================================================
# Completion / cancellation
# ============================================================================


def test_complete_after_accept(net, people) -> None:
    request = broadcast(net)

    with pytest.raises(ConflictError):
        net.requests.complete_request(request["id"], REQUESTER)

    net.requests.accept_request(request["id"], DONOR)
    with pytest.raises(PermissionDeniedError):
        net.requests.complete_request(request["id"], DONOR)

    assert net.requests.complete_request(request["id"], REQUESTER)["status"] == "Fulfilled"


def test_cancel_removes_request_and_notifications(net, people) -> None:
    request = broadcast(net)

    result = net.requests.cancel_request(request["id"], REQUESTER)

    assert result == {"deletedCount": 1, "notificationsDeleted": 4}
    assert net.store.count(NOTIFICATIONS, {"requestId": request["id"]}) == 0
    with pytest.raises(NotFoundError):
        net.requests.get_request(request["id"])


def test_cancel_while_in_progress(net, people) -> None:
    request = broadcast(net)
    net.requests.accept_request(request["id"], DONOR)

    result = net.requests.cancel_request(request["id"], REQUESTER)

    assert result["deletedCount"] == 1
    assert notifications_for(net, REQUESTER) == []


def test_only_requester_cancels(net, people) -> None:
    request = broadcast(net)
    with pytest.raises(PermissionDeniedError):
        net.requests.cancel_request(request["id"], DONOR)


def test_cancel_missing_request_is_noop(net, people) -> None:
    assert net.requests.cancel_request("BR-GONE") == {"deletedCount": 0, "notificationsDeleted": 0}
