"""Scan-to-place and scan-to-pick state machines.

The flows are plain values: no database access, no clock. A flow is
persisted as a dict on its scan session and every accepted step is logged as
a scan event, so `replay()` can rebuild any session from its event log.

Placement:
    CREATED -> SUGGESTED -> LOCATION_CONFIRMED -> ITEM_CONFIRMED -> PLACED
    SUGGESTED -> MANUAL_SELECTION -> LOCATION_CONFIRMED
    ITEM_CONFIRMED -> SUGGESTED | MANUAL_SELECTION   (commit lost the slot)
    any pre-commit state -> CANCELLED

Pick:
    SELECTED -> ITEM_SCANNED -> PICKED, any pre-commit state -> CANCELLED
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Iterable

from app.core.errors import InvalidTransition, ItemMismatch, LocationMismatch

CREATED = "CREATED"
SUGGESTED = "SUGGESTED"
MANUAL_SELECTION = "MANUAL_SELECTION"
LOCATION_CONFIRMED = "LOCATION_CONFIRMED"
ITEM_CONFIRMED = "ITEM_CONFIRMED"
PLACED = "PLACED"
CANCELLED = "CANCELLED"

SELECTED = "SELECTED"
ITEM_SCANNED = "ITEM_SCANNED"
PICKED = "PICKED"

PLACEMENT_TRANSITIONS = {
    CREATED: {SUGGESTED, MANUAL_SELECTION, CANCELLED},
    SUGGESTED: {LOCATION_CONFIRMED, MANUAL_SELECTION, CANCELLED},
    MANUAL_SELECTION: {LOCATION_CONFIRMED, CANCELLED},
    LOCATION_CONFIRMED: {ITEM_CONFIRMED, MANUAL_SELECTION, CANCELLED},
    ITEM_CONFIRMED: {PLACED, SUGGESTED, MANUAL_SELECTION, CANCELLED},
    PLACED: set(),
    CANCELLED: set(),
}

PICK_TRANSITIONS = {
    SELECTED: {ITEM_SCANNED, CANCELLED},
    ITEM_SCANNED: {PICKED, CANCELLED},
    PICKED: set(),
    CANCELLED: set(),
}

# step names, as logged on scan events
SUGGEST = "SUGGEST"
ACCEPT = "ACCEPT"
REJECT = "REJECT"
CHOOSE = "CHOOSE"
SCAN_LOCATION = "SCAN_LOCATION"
SCAN_ITEM = "SCAN_ITEM"
COMMIT = "COMMIT"
REVERT = "REVERT"
CANCEL = "CANCEL"


class _Flow:
    transitions: dict = {}
    state: str

    @property
    def is_terminal(self) -> bool:
        return not self.transitions[self.state]

    def _move(self, target: str) -> None:
        if target not in self.transitions[self.state]:
            raise InvalidTransition(f"Cannot go from {self.state} to {target}", state=self.state, target=target)
        self.state = target

    def _expect(self, *states: str) -> None:
        if self.state not in states:
            raise InvalidTransition(
                f"Step not allowed in state {self.state}", state=self.state, allowed=list(states),
            )

    def cancel(self) -> None:
        self._move(CANCELLED)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in names})

    def apply(self, action: str, raw: str | None = None) -> None:
        handler = self._actions().get(action)
        if handler is None:
            raise InvalidTransition(f"Unknown step {action}", state=self.state)
        handler(raw)

    def _actions(self) -> dict:
        return {CANCEL: lambda raw: self.cancel()}


@dataclass
class PlacementFlow(_Flow):
    item_id: str
    system_code: str
    state: str = CREATED
    suggested_code: str | None = None
    target_code: str | None = None
    manual: bool = False
    require_location_scan: bool = True
    location_scanned: bool = False

    transitions = PLACEMENT_TRANSITIONS

    def suggest(self, code: str | None) -> None:
        """Record the selector's answer. None routes to manual selection."""
        self._expect(CREATED)
        self.suggested_code = code
        self._move(SUGGESTED if code else MANUAL_SELECTION)

    def accept(self) -> None:
        self._expect(SUGGESTED)
        self._move(LOCATION_CONFIRMED)
        self.target_code = self.suggested_code
        self.manual = False
        self.location_scanned = False

    def reject(self) -> None:
        self._expect(SUGGESTED, LOCATION_CONFIRMED)
        self._move(MANUAL_SELECTION)
        self.target_code = None
        self.location_scanned = False

    def choose(self, code: str) -> None:
        # callers validate eligibility; the flow only tracks the choice
        self._expect(SUGGESTED, MANUAL_SELECTION)
        if not code:
            raise InvalidTransition("A location code is required", state=self.state)
        if self.state == SUGGESTED:
            self._move(MANUAL_SELECTION)
        self._move(LOCATION_CONFIRMED)
        self.target_code = code
        self.manual = True
        self.location_scanned = False

    def scan_location(self, raw: str) -> None:
        self._expect(LOCATION_CONFIRMED)
        if raw != self.target_code:
            raise LocationMismatch(
                f"Scanned {raw!r} but expected location {self.target_code}",
                expected=self.target_code, scanned=raw,
            )
        self.location_scanned = True

    def scan_item(self, raw: str) -> None:
        self._expect(LOCATION_CONFIRMED)
        if self.require_location_scan and not self.location_scanned:
            raise InvalidTransition("Scan the location barcode first", state=self.state)
        if raw != self.system_code:
            raise ItemMismatch(
                f"Scanned {raw!r} but expected item {self.system_code}",
                expected=self.system_code, scanned=raw,
            )
        self._move(ITEM_CONFIRMED)

    def mark_placed(self) -> None:
        self._expect(ITEM_CONFIRMED)
        self._move(PLACED)

    def revert(self, suggestion: str | None) -> None:
        """Commit lost the target slot: start over from a fresh suggestion."""
        self._expect(ITEM_CONFIRMED)
        self.target_code = None
        self.location_scanned = False
        self.manual = False
        self.suggested_code = suggestion
        if suggestion:
            self._move(SUGGESTED)
        else:
            self._move(MANUAL_SELECTION)

    def _actions(self) -> dict:
        return {
            **super()._actions(),
            SUGGEST: lambda raw: self.suggest(raw),
            ACCEPT: lambda raw: self.accept(),
            REJECT: lambda raw: self.reject(),
            CHOOSE: lambda raw: self.choose(raw),
            SCAN_LOCATION: lambda raw: self.scan_location(raw),
            SCAN_ITEM: lambda raw: self.scan_item(raw),
            COMMIT: lambda raw: self.mark_placed(),
            REVERT: lambda raw: self.revert(raw),
        }


@dataclass
class PickFlow(_Flow):
    item_id: str
    system_code: str
    location_code: str
    state: str = SELECTED
    department: str | None = None

    transitions = PICK_TRANSITIONS

    def scan_item(self, raw: str) -> None:
        self._expect(SELECTED)
        if raw != self.system_code:
            raise ItemMismatch(
                f"Scanned {raw!r} but expected item {self.system_code}",
                expected=self.system_code, scanned=raw,
            )
        self._move(ITEM_SCANNED)

    def mark_picked(self) -> None:
        self._expect(ITEM_SCANNED)
        self._move(PICKED)

    def _actions(self) -> dict:
        return {
            **super()._actions(),
            SCAN_ITEM: lambda raw: self.scan_item(raw),
            COMMIT: lambda raw: self.mark_picked(),
        }


def replay(flow: _Flow, steps: Iterable[tuple[str, str | None]]) -> _Flow:
    """Re-apply accepted (action, raw) steps to a freshly started flow."""
    for action, raw in steps:
        flow.apply(action, raw)
    return flow
