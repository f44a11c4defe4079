"""FastAPI dependency providers for the sync and read routes.

The mailbox client is out of scope for this service; a deployment attaches
one to ``app.state.mail_source`` at startup. Tests override these providers
through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status

from ordersync.llm.oracle import GeminiOracle
from ordersync.orders.interfaces import CheckpointStore, LanguageOracle, MailSource, OrderStore
from ordersync.orders.sync import OrderSyncOrchestrator
from ordersync.storage.checkpoint import SyncCheckpointRepository
from ordersync.storage.order_repository import OrderRepository


def get_mail_source(request: Request) -> MailSource:
    mail_source = getattr(request.app.state, "mail_source", None)
    if mail_source is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No mail source configured",
        )
    return mail_source


@lru_cache(maxsize=1)
def get_oracle() -> LanguageOracle:
    return GeminiOracle()


def get_order_store() -> OrderStore:
    return OrderRepository()


def get_checkpoint_store() -> CheckpointStore:
    return SyncCheckpointRepository()


def get_orchestrator(
    mail_source: MailSource = Depends(get_mail_source),
    oracle: LanguageOracle = Depends(get_oracle),
    order_store: OrderStore = Depends(get_order_store),
    checkpoints: CheckpointStore = Depends(get_checkpoint_store),
) -> OrderSyncOrchestrator:
    return OrderSyncOrchestrator(mail_source, oracle, order_store, checkpoints)
