"""
Error taxonomy shared by the gateways, the sync engine and the HTTP layer.
"""
from typing import Optional


class SyncBridgeError(Exception):
    """Base class; HTTP handlers turn these into the {"ok": false} envelope"""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SyncBridgeError):
    """A required environment value is missing or malformed"""


class OdooError(SyncBridgeError):
    """Transport failure, non-2xx or JSON-RPC error payload from Odoo"""

    status_code = 502


class ShopifyError(SyncBridgeError):
    """Transport failure or non-2xx from the Shopify Admin API (after retries)"""

    status_code = 502

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class NotFoundError(SyncBridgeError):
    """SKU missing on one side; `details` carries whatever was found on the other"""

    status_code = 404
