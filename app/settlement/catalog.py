"""
App catalog lookup for checkout.

The price of an app and the payee who sells it belong to the catalog,
not to the buyer's client. Checkout only accepts an app id and asks the
configured resolver for the rest.

Configuration (via settings):
    - SETTLEMENT_CATALOG_RESOLVER: dotted path to a callable taking an
      app id and returning a CatalogEntry, or None for unknown apps
    - SETTLEMENT_APP_CATALOG: mapping read by the default resolver,
      {"<app_id>": {"payee_id": "<uuid>", "price_cents": 999}}

Usage:
    from settlement.catalog import resolve_app

    entry = resolve_app("app_123")
    entry.payee_id, entry.price_cents
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from django.conf import settings
from django.utils.module_loading import import_string

from settlement.exceptions import AppNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEntry:
    """Server-side price and payee for one app."""

    app_id: str
    payee_id: uuid.UUID
    price_cents: int


def settings_catalog(app_id: str) -> CatalogEntry | None:
    """Resolve an app from the SETTLEMENT_APP_CATALOG setting."""
    entry = settings.SETTLEMENT_APP_CATALOG.get(app_id)
    if entry is None:
        return None
    return CatalogEntry(
        app_id=app_id,
        payee_id=uuid.UUID(str(entry["payee_id"])),
        price_cents=int(entry["price_cents"]),
    )


def resolve_app(app_id: str) -> CatalogEntry:
    """
    Look up the price and payee for an app.

    Raises:
        AppNotFoundError: The resolver does not know the app
    """
    resolver = import_string(settings.SETTLEMENT_CATALOG_RESOLVER)
    entry = resolver(app_id)
    if entry is None:
        logger.warning("Checkout for unknown app", extra={"app_id": app_id})
        raise AppNotFoundError(
            f"App {app_id} is not in the catalog",
            details={"app_id": app_id},
        )
    return entry
