import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from apps.core.exceptions import GatewayError

logger = logging.getLogger("payments")


@dataclass(frozen=True)
class CustomerInfo:
    email: str
    name: str
    phone: str = ""


@dataclass(frozen=True)
class GatewayCharge:
    transaction_ref: str
    redirect_url: str
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayVerification:
    successful: bool
    data: dict = field(default_factory=dict)
    message: str = ""

    def covers(self, amount: Decimal, currency: str) -> bool:
        """True when the gateway reports at least ``amount`` (major units) paid in ``currency``."""
        try:
            paid = Decimal(str(self.data.get("amount", "0")))
        except InvalidOperation:
            return False
        return paid >= amount and str(self.data.get("currency", "")).upper() == currency.upper()


class PaymentGateway(Protocol):
    def initialize(
        self,
        *,
        reference: str,
        amount: Decimal,
        currency: str,
        customer: CustomerInfo,
        callback_url: str,
        metadata: dict,
        payment_options: Optional[str] = None,
        description: str = "",
    ) -> GatewayCharge: ...

    def verify(self, reference: str) -> GatewayVerification: ...


def _json_amount(amount: Decimal):
    return int(amount) if amount == amount.to_integral_value() else float(amount)


class FlutterwaveGateway:
    """Flutterwave v3 hosted checkout: ``POST /payments`` then ``verify_by_reference``."""

    def __init__(self, secret_key: str, base_url: str = "https://api.flutterwave.com/v3",
                 timeout: float = 15, session: Optional[requests.Session] = None,
                 store_title: str = "", logo_url: str = ""):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.store_title = store_title
        self.logo_url = logo_url

    @classmethod
    def from_settings(cls) -> "FlutterwaveGateway":
        conf = settings.PAYMENTS
        return cls(
            secret_key=conf["FLUTTERWAVE_SECRET_KEY"],
            base_url=conf["FLUTTERWAVE_BASE_URL"],
            timeout=conf["TIMEOUT"],
            store_title=conf["STORE_TITLE"],
            logo_url=f"{conf['FRONTEND_URL']}/logo.png",
        )

    def _request(self, method: str, path: str, **kwargs) -> tuple[int, dict]:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        try:
            resp = self.session.request(method, f"{self.base_url}{path}", headers=headers,
                                        timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"flutterwave {method} {path} failed: {e}")
            raise GatewayError("Payment gateway is unreachable.") from e

        if resp.status_code >= 500:
            logger.error(f"flutterwave {method} {path} returned {resp.status_code}")
            raise GatewayError(f"Payment gateway error ({resp.status_code}).")
        try:
            body = resp.json()
        except ValueError as e:
            raise GatewayError("Payment gateway returned an invalid response.") from e
        return resp.status_code, body

    def initialize(self, *, reference, amount, currency, customer, callback_url, metadata,
                   payment_options=None, description=""):
        payload = {
            "tx_ref": reference,
            "amount": _json_amount(amount),
            "currency": currency,
            "redirect_url": callback_url,
            "customer": {"email": customer.email, "phonenumber": customer.phone, "name": customer.name},
            "customizations": {"title": self.store_title, "description": description, "logo": self.logo_url},
            "meta": metadata,
        }
        if payment_options:
            payload["payment_options"] = payment_options

        status_code, body = self._request("POST", "/payments", json=payload)
        if status_code >= 400 or body.get("status") != "success":
            message = body.get("message") or "Payment initialization failed"
            logger.warning(f"flutterwave initialize {reference} rejected: {message}")
            raise GatewayError(message)

        data = body.get("data") or {}
        return GatewayCharge(transaction_ref=reference, redirect_url=data.get("link", ""), data=data)

    def verify(self, reference):
        status_code, body = self._request("GET", "/transactions/verify_by_reference", params={"tx_ref": reference})
        data = body.get("data") or {}
        successful = status_code < 400 and body.get("status") == "success" and data.get("status") == "successful"
        return GatewayVerification(successful=successful, data=data, message=body.get("message", ""))


def get_gateway() -> PaymentGateway:
    gateway_cls = import_string(settings.PAYMENTS["GATEWAY"])
    return gateway_cls.from_settings()
