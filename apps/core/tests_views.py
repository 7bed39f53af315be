import pytest
from django.db import OperationalError

from . import views

pytestmark = pytest.mark.django_db


def test_health_reports_counts_without_auth(api_client, variant):
    res = api_client.get("/api/health/")
    assert res.status_code == 200
    assert res.data["database"] == "connected"
    assert res.data["counts"]["products"] == 1
    assert res.data["counts"]["variants"] == 1
    assert set(res.data["counts"]) == set(views.MONITORED_ENTITIES)


def test_health_degrades_when_database_fails(api_client, monkeypatch):
    def broken():
        raise OperationalError("connection refused")

    monkeypatch.setattr(views, "entity_counts", broken)
    res = api_client.get("/api/health/")
    assert res.status_code == 503
    assert res.data["database"] == "unavailable"
