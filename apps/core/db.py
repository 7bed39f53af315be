"""Atomic units of work on top of ``transaction.atomic``.

``run_atomic`` is the primitive the checkout, cancellation and payment
confirmation flows build on: it opens the transaction, applies the configured
lock/statement timeouts and retries the whole unit when the database reports a
transient conflict. Retry eligibility comes from the driver's error code, not
from the message text.
"""
import enum
import functools
import logging
import time

from django.conf import settings
from django.db import DatabaseError, connection, transaction

from .exceptions import TransactionUnavailable

logger = logging.getLogger("core")


class DbErrorKind(enum.Enum):
    SERIALIZATION = "serialization"
    DEADLOCK = "deadlock"
    LOCK_TIMEOUT = "lock_timeout"
    STATEMENT_TIMEOUT = "statement_timeout"
    BUSY = "busy"
    OTHER = "other"


# PostgreSQL SQLSTATE codes
PG_ERROR_KINDS = {
    "40001": DbErrorKind.SERIALIZATION,
    "40P01": DbErrorKind.DEADLOCK,
    "55P03": DbErrorKind.LOCK_TIMEOUT,
    "57014": DbErrorKind.STATEMENT_TIMEOUT,
}

# SQLite primary result codes: SQLITE_BUSY, SQLITE_LOCKED
SQLITE_ERROR_KINDS = {
    5: DbErrorKind.BUSY,
    6: DbErrorKind.BUSY,
}

RETRYABLE_KINDS = frozenset({DbErrorKind.SERIALIZATION, DbErrorKind.DEADLOCK, DbErrorKind.BUSY})
TIMEOUT_KINDS = frozenset({DbErrorKind.LOCK_TIMEOUT, DbErrorKind.STATEMENT_TIMEOUT})


def _driver_errors(exc: BaseException):
    # Django wraps driver errors and keeps the original as __cause__
    yield exc
    if exc.__cause__ is not None:
        yield exc.__cause__


def classify(exc: BaseException) -> DbErrorKind:
    for err in _driver_errors(exc):
        # psycopg 3 exposes sqlstate, psycopg2 pgcode
        code = getattr(err, "sqlstate", None) or getattr(err, "pgcode", None)
        if code in PG_ERROR_KINDS:
            return PG_ERROR_KINDS[code]
        sqlite_code = getattr(err, "sqlite_errorcode", None)
        if sqlite_code is not None and (sqlite_code & 0xFF) in SQLITE_ERROR_KINDS:
            return SQLITE_ERROR_KINDS[sqlite_code & 0xFF]
    return DbErrorKind.OTHER


def apply_timeouts(lock_timeout_ms=None, statement_timeout_ms=None):
    """Bound lock waits and execution time of the current transaction (PostgreSQL only)."""
    if connection.vendor != "postgresql":
        return
    conf = settings.CHECKOUT_TRANSACTION
    lock_ms = int(lock_timeout_ms if lock_timeout_ms is not None else conf["LOCK_TIMEOUT_MS"])
    stmt_ms = int(statement_timeout_ms if statement_timeout_ms is not None else conf["STATEMENT_TIMEOUT_MS"])
    with connection.cursor() as cursor:
        cursor.execute(f"SET LOCAL lock_timeout = {lock_ms}")
        cursor.execute(f"SET LOCAL statement_timeout = {stmt_ms}")


def run_atomic(fn, *args, max_attempts=None, backoff=None, **kwargs):
    """Run ``fn`` inside one atomic unit, retrying transient conflicts.

    Retries only happen when the unit is the outermost transaction; nested in
    another atomic block a failed attempt has already poisoned the outer
    transaction, so the error is surfaced immediately.
    """
    conf = settings.CHECKOUT_TRANSACTION
    max_attempts = max_attempts if max_attempts is not None else conf["MAX_ATTEMPTS"]
    backoff = backoff if backoff is not None else conf["BACKOFF"]
    nested = transaction.get_connection().in_atomic_block

    attempt = 0
    while True:
        attempt += 1
        try:
            with transaction.atomic():
                apply_timeouts()
                return fn(*args, **kwargs)
        except DatabaseError as e:
            kind = classify(e)
            if kind in TIMEOUT_KINDS:
                logger.warning(f"[tx] {fn.__name__} hit {kind.value}: {e}")
                raise TransactionUnavailable() from e
            if kind not in RETRYABLE_KINDS:
                raise
            if nested or attempt >= max_attempts:
                logger.warning(f"[tx] {fn.__name__} gave up after {attempt} attempt(s): {e}")
                raise TransactionUnavailable() from e
            logger.warning(f"[tx] {fn.__name__} {kind.value} ({attempt}/{max_attempts}), retrying")
            time.sleep(backoff * attempt)


def atomic_unit(fn=None, *, max_attempts=None, backoff=None):
    """Decorator form of :func:`run_atomic`."""
    def deco(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return run_atomic(func, *args, max_attempts=max_attempts, backoff=backoff, **kwargs)
        return wrapper
    if fn is not None:
        return deco(fn)
    return deco
