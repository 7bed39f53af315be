import pytest
from django.db import IntegrityError, OperationalError, transaction

from apps.core.exceptions import TransactionUnavailable

from .db import DbErrorKind, atomic_unit, classify, run_atomic


class PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"pg {sqlstate}")
        self.sqlstate = sqlstate


class SqliteError(Exception):
    def __init__(self, code):
        super().__init__(f"sqlite {code}")
        self.sqlite_errorcode = code


def _wrapped(driver_error, cls=OperationalError):
    try:
        raise cls(str(driver_error)) from driver_error
    except cls as e:
        return e


@pytest.mark.parametrize("driver_error, kind", [
    (PgError("40001"), DbErrorKind.SERIALIZATION),
    (PgError("40P01"), DbErrorKind.DEADLOCK),
    (PgError("55P03"), DbErrorKind.LOCK_TIMEOUT),
    (PgError("57014"), DbErrorKind.STATEMENT_TIMEOUT),
    (PgError("23505"), DbErrorKind.OTHER),
    (SqliteError(5), DbErrorKind.BUSY),
    (SqliteError(5 | (2 << 8)), DbErrorKind.BUSY),
    (SqliteError(6), DbErrorKind.BUSY),
    (SqliteError(19), DbErrorKind.OTHER),
])
def test_classify_uses_driver_codes(driver_error, kind):
    assert classify(_wrapped(driver_error)) == kind


def test_message_text_alone_is_not_classified():
    assert classify(OperationalError("could not serialize access due to concurrent update")) == DbErrorKind.OTHER


@pytest.mark.django_db(transaction=True)
def test_retryable_error_is_retried_then_succeeds():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise _wrapped(PgError("40001"))
        return "done"

    assert run_atomic(flaky, max_attempts=3, backoff=0) == "done"
    assert len(calls) == 3


@pytest.mark.django_db(transaction=True)
def test_exhausted_retries_raise_unavailable():
    calls = []

    @atomic_unit(max_attempts=2, backoff=0)
    def always_deadlocks():
        calls.append(1)
        raise _wrapped(PgError("40P01"))

    with pytest.raises(TransactionUnavailable):
        always_deadlocks()
    assert len(calls) == 2


@pytest.mark.django_db(transaction=True)
def test_timeouts_are_not_retried():
    calls = []

    def slow():
        calls.append(1)
        raise _wrapped(PgError("55P03"))

    with pytest.raises(TransactionUnavailable):
        run_atomic(slow, max_attempts=5, backoff=0)
    assert len(calls) == 1


@pytest.mark.django_db(transaction=True)
def test_other_database_errors_propagate_unchanged():
    def broken():
        raise _wrapped(PgError("23505"), IntegrityError)

    with pytest.raises(IntegrityError):
        run_atomic(broken, max_attempts=3, backoff=0)


@pytest.mark.django_db(transaction=True)
def test_nested_unit_does_not_retry():
    calls = []

    def flaky():
        calls.append(1)
        raise _wrapped(PgError("40001"))

    with pytest.raises(TransactionUnavailable):
        with transaction.atomic():
            run_atomic(flaky, max_attempts=3, backoff=0)
    assert len(calls) == 1


@pytest.mark.django_db(transaction=True)
def test_non_database_errors_are_untouched():
    calls = []

    def invalid():
        calls.append(1)
        raise ValueError("boom")

    with pytest.raises(ValueError):
        run_atomic(invalid, max_attempts=3, backoff=0)
    assert len(calls) == 1
