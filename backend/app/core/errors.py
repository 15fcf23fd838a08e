from __future__ import annotations


class WarehouseError(Exception):
    """Base class for domain errors raised by the WMS services.

    `code` is the stable machine-readable name returned to API callers and
    `status_code` the HTTP status the API layer maps it to.
    """

    code = "WAREHOUSE_ERROR"
    status_code = 400

    def __init__(self, message: str, **data):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.data:
            body["data"] = self.data
        return body


class CapacityExceeded(WarehouseError):
    code = "CAPACITY_EXCEEDED"
    status_code = 409


class LedgerConflict(CapacityExceeded):
    # concurrent writers kept winning until retries ran out
    code = "CONCURRENT_CONFLICT"


class InsufficientQuantity(WarehouseError):
    code = "INSUFFICIENT_QUANTITY"
    status_code = 409


class LocationNotFound(WarehouseError):
    code = "LOCATION_NOT_FOUND"
    status_code = 404


class ItemNotFound(WarehouseError):
    code = "ITEM_NOT_FOUND"
    status_code = 404


class CategoryNotFound(WarehouseError):
    code = "CATEGORY_NOT_FOUND"
    status_code = 404


class SessionNotFound(WarehouseError):
    code = "SESSION_NOT_FOUND"
    status_code = 404


class LocationMismatch(WarehouseError):
    code = "LOCATION_MISMATCH"
    status_code = 409


class ItemMismatch(WarehouseError):
    code = "ITEM_MISMATCH"
    status_code = 409


class InvalidTransition(WarehouseError):
    code = "INVALID_TRANSITION"
    status_code = 409


class LocationNotEligible(WarehouseError):
    code = "LOCATION_NOT_ELIGIBLE"
    status_code = 409


class SessionOwnership(WarehouseError):
    code = "SESSION_OWNED_BY_OTHER_OPERATOR"
    status_code = 403


class InvalidItemData(WarehouseError):
    code = "INVALID_ITEM_DATA"
    status_code = 422


class ConcurrentConflict(Exception):
    """Raised inside the ledger when a conditional update lost a race.

    Never leaves the ledger: it is retried, then surfaced as LedgerConflict.
    """
