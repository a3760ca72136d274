# Overview: Row locking and retry helpers for stock-mutating RPCs.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_products(tenant_id: int, product_ids) -> dict[int, Product]:
    """
    Lock the given products of one tenant, always in ascending id order so two
    concurrent invoices touching the same products cannot deadlock.

    Returns {product_id: Product}; ids outside the tenant are simply absent.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    query = (
        db.session.query(Product)
        .filter(Product.tenant_id == tenant_id, Product.id.in_(ids))
        .order_by(Product.id.asc())
    )
    return {p.id: p for p in lock_for_update(query).all()}


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError.
    Anything else rolls back and propagates immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
