"""Storage backends for ledgersync."""

from .base import (
    APP_STATES_TABLE,
    AUDIT_EVENTS_TABLE,
    CARDS_TABLE,
    CATEGORIES_TABLE,
    DEFAULT_BATCH_SIZE,
    INSTALLMENT_PLANS_TABLE,
    TRANSACTIONS_TABLE,
    WORKSPACES_TABLE,
    Query,
    Row,
    Store,
    chunked,
)

__all__ = [
    "APP_STATES_TABLE",
    "AUDIT_EVENTS_TABLE",
    "CARDS_TABLE",
    "CATEGORIES_TABLE",
    "DEFAULT_BATCH_SIZE",
    "INSTALLMENT_PLANS_TABLE",
    "TRANSACTIONS_TABLE",
    "WORKSPACES_TABLE",
    "Query",
    "Row",
    "Store",
    "chunked",
]
