"""
Entitlement Store - idempotent writes against the shared entitlement tables.

Every operation is one session and one commit: a write either lands whole
or surfaces as StoreError.
"""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from app.db.models import Entitlement, UserSubscription, utc_now
from app.exceptions import StoreError
from app.models.domain import EntitlementAction, EntitlementUpdate, SubscriptionStateUpdate
from app.observability.metrics import metrics

logger = get_logger(__name__)


class EntitlementStore(Protocol):
    """
    Entitlement store protocol.

    Per-product rows are keyed by (user_id, product_id); the subscription
    state row is keyed by user_id alone.
    """

    async def upsert_entitlement(self, entitlement_update: EntitlementUpdate) -> None:
        """Update the rows matching (user_id, product_id), inserting one if none match."""
        ...

    async def insert_entitlement(self, entitlement_update: EntitlementUpdate) -> None:
        """Insert a new row unconditionally."""
        ...

    async def deactivate_entitlement(self, entitlement_update: EntitlementUpdate) -> int:
        """Set is_active=False on matching rows; returns rows touched."""
        ...

    async def update_subscription_state(self, state_update: SubscriptionStateUpdate) -> int:
        """Write the changed columns of the user's subscription row; returns rows touched."""
        ...


async def apply_entitlement_update(
    store: EntitlementStore, entitlement_update: EntitlementUpdate
) -> None:
    """Route an EntitlementUpdate to the store write its action names."""
    if entitlement_update.action == EntitlementAction.UPSERT:
        await store.upsert_entitlement(entitlement_update)
    elif entitlement_update.action == EntitlementAction.INSERT:
        await store.insert_entitlement(entitlement_update)
    else:
        await store.deactivate_entitlement(entitlement_update)


class SqlEntitlementStore:
    """EntitlementStore backed by PostgreSQL through async SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Run one write in its own session; commit on success, roll back on failure."""
        start = time.perf_counter()
        try:
            async with self.session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except SQLAlchemyError:
                    await session.rollback()
                    raise
        except SQLAlchemyError as exc:
            metrics.record_store_write(operation, False, time.perf_counter() - start)
            logger.error(
                "entitlement_store_write_failed",
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StoreError(operation, str(exc)) from exc

        metrics.record_store_write(operation, True, time.perf_counter() - start)

    @staticmethod
    def _row_values(entitlement_update: EntitlementUpdate) -> dict:
        return {
            "user_id": entitlement_update.user_id,
            "product_id": entitlement_update.product_id,
            "platform": entitlement_update.platform.value,
            "purchase_token": entitlement_update.purchase_token,
            "expires_at": entitlement_update.expires_at,
            "is_active": entitlement_update.is_active,
            "raw_response": entitlement_update.raw_response,
        }

    @staticmethod
    def _lock_key(entitlement_update: EntitlementUpdate) -> str:
        return f"{entitlement_update.user_id}:{entitlement_update.product_id}"

    async def upsert_entitlement(self, entitlement_update: EntitlementUpdate) -> None:
        values = self._row_values(entitlement_update)

        async with self._transaction("upsert") as session:
            # Concurrent writers for one (user_id, product_id) serialize here until commit,
            # so two first deliveries cannot both miss the UPDATE and both INSERT.
            lock_key = func.hashtext(self._lock_key(entitlement_update))
            await session.execute(select(func.pg_advisory_xact_lock(lock_key)))
            result = await session.execute(
                update(Entitlement)
                .where(
                    Entitlement.user_id == entitlement_update.user_id,
                    Entitlement.product_id == entitlement_update.product_id,
                )
                .values(**values, updated_at=utc_now())
            )
            inserted = result.rowcount == 0
            if inserted:
                await session.execute(insert(Entitlement).values(**values))

        logger.info(
            "entitlement_upserted",
            user_id=entitlement_update.user_id,
            product_id=entitlement_update.product_id,
            platform=entitlement_update.platform.value,
            is_active=entitlement_update.is_active,
            inserted=inserted,
        )

    async def insert_entitlement(self, entitlement_update: EntitlementUpdate) -> None:
        async with self._transaction("insert") as session:
            await session.execute(insert(Entitlement).values(**self._row_values(entitlement_update)))

        logger.info(
            "entitlement_inserted",
            user_id=entitlement_update.user_id,
            product_id=entitlement_update.product_id,
            platform=entitlement_update.platform.value,
        )

    async def deactivate_entitlement(self, entitlement_update: EntitlementUpdate) -> int:
        async with self._transaction("deactivate") as session:
            result = await session.execute(
                update(Entitlement)
                .where(
                    Entitlement.user_id == entitlement_update.user_id,
                    Entitlement.product_id == entitlement_update.product_id,
                )
                .values(
                    is_active=False,
                    raw_response=entitlement_update.raw_response,
                    updated_at=utc_now(),
                )
            )
            rows = result.rowcount

        logger.info(
            "entitlement_deactivated",
            user_id=entitlement_update.user_id,
            product_id=entitlement_update.product_id,
            platform=entitlement_update.platform.value,
            rows=rows,
        )
        return rows

    async def update_subscription_state(self, state_update: SubscriptionStateUpdate) -> int:
        async with self._transaction("subscription_state") as session:
            result = await session.execute(
                update(UserSubscription)
                .where(UserSubscription.user_id == state_update.user_id)
                .values(**state_update.changes())
            )
            rows = result.rowcount

        if rows == 0:
            logger.warning("subscription_row_missing", user_id=state_update.user_id)
        else:
            logger.info(
                "subscription_state_updated",
                user_id=state_update.user_id,
                status=state_update.status,
                tier=state_update.tier,
            )
        return rows
