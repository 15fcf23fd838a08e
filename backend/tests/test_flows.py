from __future__ import annotations

import pytest

from app.core.errors import InvalidTransition, ItemMismatch, LocationMismatch
from services.wms.scan import flows
from services.wms.scan.flows import PickFlow, PlacementFlow, replay


def placement(**kw):
    return PlacementFlow(item_id="item-1", system_code="SYS123", **kw)


def test_happy_path_with_suggestion():
    f = placement()
    f.suggest("C01-1-1")
    assert f.state == flows.SUGGESTED
    f.accept()
    assert (f.state, f.target_code) == (flows.LOCATION_CONFIRMED, "C01-1-1")
    f.scan_location("C01-1-1")
    f.scan_item("SYS123")
    assert f.state == flows.ITEM_CONFIRMED
    f.mark_placed()
    assert f.state == flows.PLACED
    assert f.is_terminal


def test_no_suggestion_goes_to_manual_selection():
    f = placement()
    f.suggest(None)
    assert f.state == flows.MANUAL_SELECTION
    with pytest.raises(InvalidTransition):
        f.accept()
    f.choose("A01-0-1")
    assert f.state == flows.LOCATION_CONFIRMED
    assert f.manual is True


def test_reject_then_choose():
    f = placement()
    f.suggest("C01-1-1")
    f.reject()
    assert f.state == flows.MANUAL_SELECTION
    assert f.target_code is None
    f.choose("C02-1-1")
    assert f.target_code == "C02-1-1"


def test_location_mismatch_keeps_state():
    f = placement()
    f.suggest("C01-1-1")
    f.accept()
    with pytest.raises(LocationMismatch):
        f.scan_location("C01-1-2")
    assert f.state == flows.LOCATION_CONFIRMED
    assert f.location_scanned is False


def test_item_scan_needs_location_scan_first():
    f = placement()
    f.suggest("C01-1-1")
    f.accept()
    with pytest.raises(InvalidTransition):
        f.scan_item("SYS123")


def test_location_scan_can_be_skipped_when_not_required():
    f = placement(require_location_scan=False)
    f.suggest("C01-1-1")
    f.accept()
    f.scan_item("SYS123")
    assert f.state == flows.ITEM_CONFIRMED


def test_item_mismatch():
    f = placement()
    f.suggest("C01-1-1")
    f.accept()
    f.scan_location("C01-1-1")
    with pytest.raises(ItemMismatch) as ei:
        f.scan_item("SYS124")
    assert ei.value.data == {"expected": "SYS123", "scanned": "SYS124"}
    assert f.state == flows.LOCATION_CONFIRMED


def test_revert_after_lost_capacity():
    f = placement()
    f.suggest("C01-1-1")
    f.accept()
    f.scan_location("C01-1-1")
    f.scan_item("SYS123")
    f.revert("C02-1-1")
    assert (f.state, f.suggested_code, f.target_code) == (flows.SUGGESTED, "C02-1-1", None)

    g = placement(require_location_scan=False)
    g.suggest("C01-1-1")
    g.accept()
    g.scan_item("SYS123")
    g.revert(None)
    assert g.state == flows.MANUAL_SELECTION


def test_cancel_is_terminal():
    f = placement()
    f.suggest("C01-1-1")
    f.cancel()
    assert f.is_terminal
    with pytest.raises(InvalidTransition):
        f.cancel()
    with pytest.raises(InvalidTransition):
        f.accept()


def test_placed_cannot_be_cancelled():
    f = placement(require_location_scan=False)
    f.suggest("C01-1-1")
    f.accept()
    f.scan_item("SYS123")
    f.mark_placed()
    with pytest.raises(InvalidTransition):
        f.cancel()


def test_pick_flow():
    p = PickFlow(item_id="item-1", system_code="SYS123", location_code="C01-1-1")
    with pytest.raises(ItemMismatch):
        p.scan_item("SYS124")
    assert p.state == flows.SELECTED
    with pytest.raises(InvalidTransition):
        p.mark_picked()
    p.scan_item("SYS123")
    p.mark_picked()
    assert p.state == flows.PICKED and p.is_terminal


def test_round_trip_through_dict():
    f = placement()
    f.suggest("C01-1-1")
    f.accept()
    restored = PlacementFlow.from_dict({**f.to_dict(), "unknown": 1})
    assert restored == f


def test_replay_rebuilds_state():
    steps = [
        (flows.SUGGEST, "C01-1-1"),
        (flows.REJECT, None),
        (flows.CHOOSE, "C02-1-1"),
        (flows.SCAN_LOCATION, "C02-1-1"),
        (flows.SCAN_ITEM, "SYS123"),
        (flows.COMMIT, None),
    ]
    f = replay(placement(), steps)
    assert f.state == flows.PLACED
    assert f.target_code == "C02-1-1"


def test_replay_rejects_unknown_step():
    with pytest.raises(InvalidTransition):
        replay(placement(), [("TELEPORT", None)])
