"""Exception types shared across the sync bridge."""

from __future__ import annotations


class SyncBridgeError(Exception):
    """Base class for errors raised by the sync bridge."""

    http_status = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ResyncValidationError(SyncBridgeError):
    """The caller sent a resync request that can never succeed as-is."""

    http_status = 400


class ExternalStoreError(SyncBridgeError):
    """SAP rejected a request. ``detail`` is SAP's own error text."""

    http_status = 502

    def __init__(self, message: str, detail: str = "", status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{message}: {detail}" if detail else message)


class OdooRpcError(SyncBridgeError):
    """Odoo answered a JSON-RPC call with an error object."""

    http_status = 502


class QueueItemNotFound(SyncBridgeError):
    http_status = 404

    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__(f"Queue item {item_id} not found")


class QueueTransitionError(SyncBridgeError):
    """A state transition was requested from a status that does not allow it."""

    http_status = 409

    def __init__(self, item_id: int, message: str) -> None:
        self.item_id = item_id
        super().__init__(message)


class UnsupportedEventCategory(SyncBridgeError):
    http_status = 400

    def __init__(self, category: str) -> None:
        self.category = category
        super().__init__(f"No handler registered for event category '{category}'")
