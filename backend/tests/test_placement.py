from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.core.errors import (
    CapacityExceeded,
    InvalidTransition,
    ItemMismatch,
    LocationMismatch,
    LocationNotEligible,
    LocationNotFound,
    SessionOwnership,
)
from app.db.models.warehouse import ITEM_PENDING, ITEM_PLACED, Location, Movement
from app.db.models.wms.scan_sessions import ScanEvent, ScanSession
from app.events.outbox import OutboxEvent
from services.wms.inventory_ops import ledger
from services.wms.inventory_ops.locations import set_flags
from services.wms.scan import flows
from services.wms.scan import placement as svc
from services.wms.scan.sessions import accepted_steps, replay_session


def _confirm(db, s, item, operator="alice"):
    svc.scan_location(db, session_id=s.id, operator=operator, raw=s.flow["target_code"])
    return svc.scan_item(db, session_id=s.id, operator=operator, raw=item.system_code)


def _ready(db, item, operator="alice"):
    s = svc.start_placement(db, item_id=item.id, operator=operator)
    s = svc.accept_suggestion(db, session_id=s.id, operator=operator)
    return _confirm(db, s, item, operator)


def test_commit_places_item(db, make_location, make_item):
    make_location(row="C", bay=1, level=1, max_weight=100)
    item = make_item(weight=20)

    s = _ready(db, item)
    assert s.state == flows.ITEM_CONFIRMED
    res = svc.commit_placement(db, session_id=s.id, operator="alice")

    assert res.applied is True
    assert res.session.state == flows.PLACED and res.session.closed
    assert res.location.current_weight == Decimal("20")
    assert res.item.status == ITEM_PLACED
    assert res.item.location == "C01-1-1"
    assert res.item.location_verified is True
    movements = db.query(Movement).all()
    assert len(movements) == 1
    mv = movements[0]
    assert (mv.type, mv.operator, mv.reference, mv.notes) == ("IN", "alice", "SKU-1", "Placed at C01-1-1")
    assert mv.weight == Decimal("20")
    assert db.query(OutboxEvent).filter_by(topic="wms.movement.recorded").count() == 1


def test_commit_twice_is_a_noop(db, make_location, make_item):
    make_location(max_weight=100)
    item = make_item(weight=20)
    s = _ready(db, item)
    svc.commit_placement(db, session_id=s.id, operator="alice")

    again = svc.commit_placement(db, session_id=s.id, operator="alice")
    assert again.applied is False
    assert again.movement is not None
    assert db.query(Movement).count() == 1
    assert db.query(Location).filter_by(code="C01-1-1").one().current_weight == Decimal("20")


def test_two_sessions_same_slot_only_one_fits(db, make_location, make_item):
    make_location(row="C", bay=1, level=1, max_weight=100)
    first = make_item(weight=60, item_code="SKU-A")
    second = make_item(weight=60, item_code="SKU-B")

    s1 = _ready(db, first, "alice")
    s2 = _ready(db, second, "bob")
    assert s1.flow["target_code"] == s2.flow["target_code"] == "C01-1-1"

    ok = svc.commit_placement(db, session_id=s1.id, operator="alice")
    assert ok.applied
    with pytest.raises(CapacityExceeded) as ei:
        svc.commit_placement(db, session_id=s2.id, operator="bob")

    assert db.query(Location).filter_by(code="C01-1-1").one().current_weight == Decimal("60")
    db.refresh(second)
    assert second.status == ITEM_PENDING
    assert db.query(Movement).count() == 1
    # nowhere else fits, so the losing session is back in manual selection
    assert ei.value.data["state"] == flows.MANUAL_SELECTION
    lost = db.get(ScanSession, ei.value.data["session_id"])
    assert lost.state == flows.MANUAL_SELECTION
    assert lost.closed is False


def test_capacity_loss_re_suggests(db, make_location, make_item):
    make_location(row="C", bay=1, level=1, max_weight=100)
    make_location(row="C", bay=2, level=1, max_weight=100)
    first = make_item(weight=60, item_code="SKU-A")
    second = make_item(weight=60, item_code="SKU-B")

    s1 = svc.start_placement(db, item_id=first.id, operator="alice")
    s2 = svc.start_placement(db, item_id=second.id, operator="bob")
    # both suggested the same slot while it was empty
    assert s1.flow["suggested_code"] == s2.flow["suggested_code"] == "C01-1-1"
    for s, item, op in ((s1, first, "alice"), (s2, second, "bob")):
        svc.accept_suggestion(db, session_id=s.id, operator=op)
        _confirm(db, db.get(ScanSession, s.id), item, op)

    svc.commit_placement(db, session_id=s1.id, operator="alice")
    with pytest.raises(CapacityExceeded):
        svc.commit_placement(db, session_id=s2.id, operator="bob")

    db.refresh(s2)
    assert s2.state == flows.SUGGESTED
    assert s2.flow["suggested_code"] == "C02-1-1"
    assert s2.last_error

    svc.accept_suggestion(db, session_id=s2.id, operator="bob")
    _confirm(db, s2, second, "bob")
    res = svc.commit_placement(db, session_id=s2.id, operator="bob")
    assert res.applied and res.item.location == "C02-1-1"


def test_same_item_in_two_sessions_places_once(db, make_location, make_item):
    make_location(max_weight=1000)
    item = make_item(weight=20)
    s1 = _ready(db, item, "alice")
    s2 = _ready(db, item, "bob")

    assert svc.commit_placement(db, session_id=s1.id, operator="alice").applied
    res = svc.commit_placement(db, session_id=s2.id, operator="bob")

    assert res.applied is False
    assert res.session.state == flows.CANCELLED
    assert db.query(Movement).count() == 1
    assert db.query(Location).filter_by(code="C01-1-1").one().current_weight == Decimal("20")


def test_scan_mismatches_are_logged_and_recoverable(db, make_location, make_item):
    make_location(max_weight=100)
    item = make_item(weight=20)
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    svc.accept_suggestion(db, session_id=s.id, operator="alice")

    with pytest.raises(LocationMismatch):
        svc.scan_location(db, session_id=s.id, operator="alice", raw="C01-1-2")
    svc.scan_location(db, session_id=s.id, operator="alice", raw="C01-1-1")
    with pytest.raises(ItemMismatch):
        svc.scan_item(db, session_id=s.id, operator="alice", raw="SYS-WRONG")
    s = svc.scan_item(db, session_id=s.id, operator="alice", raw=item.system_code)
    assert s.state == flows.ITEM_CONFIRMED

    results = [e.result for e in db.query(ScanEvent).filter_by(session_id=s.id).order_by(ScanEvent.seq)]
    assert results == ["OK", "OK", "REJECTED", "OK", "REJECTED", "OK"]
    assert db.query(Location).filter_by(code="C01-1-1").one().current_weight == Decimal("0")


def test_manual_choice_must_be_eligible(db, make_location, make_item):
    make_location(row="C", bay=1, level=1, max_weight=100)
    make_location(row="C", bay=2, level=1, max_weight=10)
    item = make_item(weight=20)
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    svc.reject_suggestion(db, session_id=s.id, operator="alice")

    with pytest.raises(LocationNotEligible):
        svc.choose_location(db, session_id=s.id, operator="alice", location_code="C02-1-1")
    s = svc.choose_location(db, session_id=s.id, operator="alice", location_code="C01-1-1")
    assert s.state == flows.LOCATION_CONFIRMED
    assert s.flow["manual"] is True


def test_unknown_location_closes_session(db, make_location, make_item):
    make_location(max_weight=100)
    item = make_item(weight=20)
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    with pytest.raises(LocationNotFound):
        svc.choose_location(db, session_id=s.id, operator="alice", location_code="Z99-9-9")
    db.refresh(s)
    assert s.state == flows.CANCELLED and s.closed


def test_no_room_anywhere_starts_in_manual_selection(db, make_location, make_item):
    make_location(max_weight=10)
    item = make_item(weight=20)
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    assert s.state == flows.MANUAL_SELECTION
    assert s.flow["suggested_code"] is None


def test_coil_items_are_sent_to_ground(db, make_location, make_item):
    make_location(row="A", bay=1, level=1, max_weight=1500)
    make_location(row="A", bay=2, level=0)
    item = make_item(weight=900, item_code="COIL-7", category="STEEL",
                     metadata={"kind": "coil", "coil_number": 7, "coil_length_ft": 120.5})
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    assert s.flow["suggested_code"] == "A02-0-1"


def test_other_operator_cannot_drive_session(db, make_location, make_item):
    make_location(max_weight=100)
    item = make_item(weight=20)
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    with pytest.raises(SessionOwnership):
        svc.accept_suggestion(db, session_id=s.id, operator="bob")


def test_cancel_writes_nothing_shared(db, make_location, make_item):
    make_location(max_weight=100)
    item = make_item(weight=20)
    s = _ready(db, item)
    s = svc.cancel_placement(db, session_id=s.id, operator="alice")
    assert s.state == flows.CANCELLED
    with pytest.raises(InvalidTransition):
        svc.commit_placement(db, session_id=s.id, operator="alice")
    assert db.query(Movement).count() == 0
    db.refresh(item)
    assert item.status == ITEM_PENDING


def test_commit_before_confirmation_is_rejected(db, make_location, make_item):
    make_location(max_weight=100)
    item = make_item(weight=20)
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    with pytest.raises(InvalidTransition):
        svc.commit_placement(db, session_id=s.id, operator="alice")


def test_placed_item_cannot_start_placement(db, make_location, make_item):
    make_location(max_weight=100)
    item = make_item(weight=20)
    svc.commit_placement(db, session_id=_ready(db, item).id, operator="alice")
    with pytest.raises(InvalidTransition):
        svc.start_placement(db, item_id=item.id, operator="alice")


def test_session_replays_from_event_log(db, make_location, make_item):
    make_location(row="C", bay=1, level=1, max_weight=100)
    make_location(row="C", bay=2, level=1, max_weight=100)
    item = make_item(weight=20)
    s = svc.start_placement(db, item_id=item.id, operator="alice")
    svc.reject_suggestion(db, session_id=s.id, operator="alice")
    svc.choose_location(db, session_id=s.id, operator="alice", location_code="C02-1-1")
    with pytest.raises(LocationMismatch):
        svc.scan_location(db, session_id=s.id, operator="alice", raw="C01-1-1")
    svc.scan_location(db, session_id=s.id, operator="alice", raw="C02-1-1")
    svc.scan_item(db, session_id=s.id, operator="alice", raw=item.system_code)
    svc.commit_placement(db, session_id=s.id, operator="alice")

    db.refresh(s)
    rebuilt = replay_session(db, s.id, svc.initial_flow(s))
    assert rebuilt.to_dict() == s.flow
    assert [a for a, _ in accepted_steps(db, s.id)][0] == flows.SUGGEST


def test_interleaved_commits_on_one_slot(db, session_factory, make_location, make_item, monkeypatch):
    make_location(row="C", bay=1, level=1, max_weight=100)
    first = make_item(weight=60, item_code="SKU-A")
    second = make_item(weight=60, item_code="SKU-B")
    s1 = _ready(db, first, "alice")
    s2 = _ready(db, second, "bob")

    real_get_item = svc.get_item
    real_read = ledger._read
    alice = []
    reads = []

    def bob_reads_then_alice_commits(session, item_id):
        monkeypatch.setattr(svc, "get_item", real_get_item)
        loc = real_read(session, ledger.LOCATION_WEIGHT, "C01-1-1")
        stale = SimpleNamespace(code=loc.code, level=loc.level, current_weight=loc.current_weight,
                                max_weight=loc.max_weight, version=loc.version)
        other = session_factory()
        try:
            alice.append(svc.commit_placement(other, session_id=s1.id, operator="alice").applied)
        finally:
            other.close()

        def stale_first_read(sess, counter, key):
            reads.append(key)
            return stale if len(reads) == 1 else real_read(sess, counter, key)

        monkeypatch.setattr(ledger, "_read", stale_first_read)
        return real_get_item(session, item_id)

    monkeypatch.setattr(svc, "get_item", bob_reads_then_alice_commits)
    with pytest.raises(CapacityExceeded) as ei:
        svc.commit_placement(db, session_id=s2.id, operator="bob")

    assert alice == [True]
    # bob's conditional update saw alice's write, re-read, and then ran out of room
    assert len(reads) == 2
    assert ei.value.code == "CAPACITY_EXCEEDED"
    db.expire_all()
    assert db.query(Location).filter_by(code="C01-1-1").one().current_weight == Decimal("60")
    assert db.query(Movement).count() == 1
    db.refresh(second)
    assert second.status == ITEM_PENDING and second.location is None


def test_duplicate_commit_racing_itself_is_a_noop(db, session_factory, make_location, make_item, monkeypatch):
    make_location(max_weight=100)
    item = make_item(weight=20)
    s = _ready(db, item)
    real_get_item = svc.get_item

    def stale_then_duplicate(session, item_id):
        monkeypatch.setattr(svc, "get_item", real_get_item)
        stale = real_get_item(session, item_id)
        # the same submit lands first on another connection
        other = session_factory()
        try:
            assert svc.commit_placement(other, session_id=s.id, operator="alice").applied
        finally:
            other.close()
        return stale

    monkeypatch.setattr(svc, "get_item", stale_then_duplicate)
    res = svc.commit_placement(db, session_id=s.id, operator="alice")

    assert res.applied is False
    assert res.session.state == flows.PLACED
    assert res.movement is not None
    assert res.item.status == ITEM_PLACED
    assert db.query(Movement).count() == 1
    assert db.query(ScanEvent).filter_by(session_id=s.id, result="NOOP").count() == 0
    assert db.query(Location).filter_by(code="C01-1-1").one().current_weight == Decimal("20")


@pytest.mark.parametrize("level,flags", [
    (1, {"available": False}),
    (1, {"verified": False}),
    (0, {"ground_full": True}),
])
def test_slot_disabled_after_confirmation_is_re_suggested(db, make_location, make_item, level, flags):
    make_location(row="C", bay=1, level=level, max_weight=100)
    make_location(row="C", bay=2, level=level, max_weight=100)
    item = make_item(weight=20)
    s = _ready(db, item)
    lost = f"C01-{level}-1"
    assert s.flow["target_code"] == lost

    set_flags(db, lost, **flags)
    with pytest.raises(LocationNotEligible) as ei:
        svc.commit_placement(db, session_id=s.id, operator="alice")

    assert ei.value.data["suggested_code"] == f"C02-{level}-1"
    db.refresh(s)
    assert s.state == flows.SUGGESTED and not s.closed
    db.refresh(item)
    assert item.status == ITEM_PENDING
    assert db.query(Movement).count() == 0
    assert db.query(Location).filter_by(code=lost).one().current_weight == Decimal("0")
