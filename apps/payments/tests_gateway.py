from decimal import Decimal

import pytest
import requests

from apps.core.exceptions import GatewayError

from .gateway import CustomerInfo, FlutterwaveGateway, GatewayVerification, get_gateway


class StubResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class StubSession:
    def __init__(self, *responses, error=None):
        self.responses = list(responses)
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


def _gateway(session):
    return FlutterwaveGateway(secret_key="FLWSECK_TEST", base_url="https://flw.test/v3/", timeout=3,
                              session=session, store_title="Iwanyu")


def _initialize(gateway, amount=Decimal("23600")):
    return gateway.initialize(
        reference="ORD-1-ABCDEF-1700000000000",
        amount=amount,
        currency="RWF",
        customer=CustomerInfo(email="u@test.com", name="Uwase Aline", phone="0788000000"),
        callback_url="https://shop.test/callback",
        metadata={"order_id": "x"},
        payment_options="card",
    )


def test_initialize_posts_hosted_checkout_request():
    session = StubSession(StubResponse(200, {"status": "success", "data": {"link": "https://pay.test/abc"}}))

    charge = _initialize(_gateway(session))

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://flw.test/v3/payments")
    assert kwargs["headers"]["Authorization"] == "Bearer FLWSECK_TEST"
    assert kwargs["timeout"] == 3
    assert kwargs["json"]["amount"] == 23600
    assert kwargs["json"]["payment_options"] == "card"
    assert kwargs["json"]["customer"]["phonenumber"] == "0788000000"
    assert charge.redirect_url == "https://pay.test/abc"
    assert charge.transaction_ref == "ORD-1-ABCDEF-1700000000000"


def test_fractional_amount_is_sent_as_number():
    session = StubSession(StubResponse(200, {"status": "success", "data": {"link": "x"}}))
    _initialize(_gateway(session), amount=Decimal("19.99"))
    assert session.calls[0][2]["json"]["amount"] == 19.99


def test_rejected_initialize_raises_gateway_error():
    session = StubSession(StubResponse(400, {"status": "error", "message": "Invalid currency"}))
    with pytest.raises(GatewayError) as exc:
        _initialize(_gateway(session))
    assert "Invalid currency" in str(exc.value.detail)


@pytest.mark.parametrize("session", [
    StubSession(error=requests.ConnectionError("down")),
    StubSession(StubResponse(503, {"status": "error"})),
    StubSession(StubResponse(200, None)),
])
def test_transport_failures_raise_gateway_error(session):
    with pytest.raises(GatewayError):
        _gateway(session).verify("ref")


def test_verify_by_reference_success():
    body = {"status": "success", "message": "Transaction fetched",
            "data": {"status": "successful", "amount": 23600, "currency": "RWF"}}
    session = StubSession(StubResponse(200, body))

    result = _gateway(session).verify("ref-1")

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://flw.test/v3/transactions/verify_by_reference")
    assert kwargs["params"] == {"tx_ref": "ref-1"}
    assert result.successful
    assert result.covers(Decimal("23600"), "rwf")
    assert not result.covers(Decimal("23601"), "RWF")
    assert not result.covers(Decimal("23600"), "USD")


def test_verify_reports_pending_transaction_as_unsuccessful():
    body = {"status": "success", "data": {"status": "pending"}}
    assert not _gateway(StubSession(StubResponse(200, body))).verify("ref").successful


def test_verify_not_found_is_unsuccessful_not_an_error():
    body = {"status": "error", "message": "No transaction was found", "data": None}
    result = _gateway(StubSession(StubResponse(404, body))).verify("ref")
    assert not result.successful
    assert result.message == "No transaction was found"


def test_covers_rejects_garbage_amount():
    assert not GatewayVerification(successful=True, data={"amount": "abc", "currency": "RWF"}).covers(
        Decimal("1"), "RWF")


def test_get_gateway_uses_configured_class(settings):
    settings.PAYMENTS = {**settings.PAYMENTS, "FLUTTERWAVE_SECRET_KEY": "sk", "TIMEOUT": 7}
    gateway = get_gateway()
    assert isinstance(gateway, FlutterwaveGateway)
    assert gateway.timeout == 7
