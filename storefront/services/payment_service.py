from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from storefront.config import Config
from storefront.errors import (
    PaymentAmountMismatch,
    PaymentAuthFailed,
    PaymentError,
    PaymentNotCompleted,
    PaymentNotFound,
    PaymentProviderError,
    PaymentVerificationTimeout,
)
from storefront.models import parse_money, to_money
from storefront.observability import increment_counter

COMPLETED_STATUSES = frozenset({"COMPLETED"})


class PayPalClient:
    """
    Thin wrapper around the PayPal REST endpoints used by the storefront.

    Every outbound call carries ``Config.PAYPAL_TIMEOUT_SECONDS``; timeouts
    surface as ``PaymentVerificationTimeout`` rather than hanging the request.
    """

    def __init__(
        self,
        config: type[Config] = Config,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.http = http or requests.Session()
        self.base_url = config.PAYPAL_API_URL.rstrip("/")
        self.timeout = config.PAYPAL_TIMEOUT_SECONDS
        self.logger = logging.getLogger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self.config.PAYPAL_CLIENT_ID and self.config.PAYPAL_CLIENT_SECRET)

    def get_access_token(self) -> str:
        if not self.configured:
            raise PaymentAuthFailed("PayPal credentials are not configured")

        try:
            response = self.http.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.config.PAYPAL_CLIENT_ID, self.config.PAYPAL_CLIENT_SECRET),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise PaymentVerificationTimeout("Timed out authenticating with PayPal")
        except requests.RequestException as exc:
            self.logger.error("PayPal token request failed: %s", exc)
            raise PaymentAuthFailed("Failed to authenticate with PayPal")

        if response.status_code != 200:
            self.logger.error(
                "PayPal token exchange rejected",
                extra={"status_code": response.status_code},
            )
            raise PaymentAuthFailed(
                "Failed to authenticate with PayPal",
                details={"status": response.status_code},
            )

        token = _json_or_empty(response).get("access_token")
        if not token:
            raise PaymentAuthFailed("PayPal did not return an access token")
        return token

    def get_order(self, paypal_order_id: str, access_token: str) -> Dict[str, Any]:
        try:
            response = self.http.get(
                f"{self.base_url}/v2/checkout/orders/{_path_segment(paypal_order_id)}",
                headers=self._bearer(access_token),
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise PaymentVerificationTimeout("Timed out fetching the PayPal order")
        except requests.RequestException as exc:
            self.logger.error("PayPal order lookup failed: %s", exc)
            raise PaymentNotFound(
                "Failed to retrieve the PayPal order",
                details={"paypal_order_id": paypal_order_id},
            )

        if response.status_code != 200:
            raise PaymentNotFound(
                "PayPal order not found",
                details={"paypal_order_id": paypal_order_id, "status": response.status_code},
            )
        return _json_or_empty(response)

    def create_order(self, amount: Decimal) -> Dict[str, Any]:
        try:
            value = parse_money(amount)
        except ValueError:
            raise PaymentError("Invalid payment amount", details={"amount": str(amount)})
        if value <= 0:
            raise PaymentError("Invalid payment amount", details={"amount": str(value)})

        token = self.get_access_token()
        try:
            response = self.http.post(
                f"{self.base_url}/v2/checkout/orders",
                headers=self._bearer(token),
                json={
                    "intent": "CAPTURE",
                    "purchase_units": [
                        {
                            "amount": {
                                "currency_code": self.config.CURRENCY_CODE,
                                "value": str(value),
                            }
                        }
                    ],
                },
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise PaymentVerificationTimeout("Timed out creating the PayPal order")
        except requests.RequestException as exc:
            self.logger.error("PayPal order creation failed: %s", exc)
            raise PaymentProviderError("Failed to create PayPal order")

        if response.status_code not in (200, 201):
            raise PaymentProviderError(
                "Failed to create PayPal order",
                details={"status": response.status_code},
            )
        return _json_or_empty(response)

    def capture_order(self, paypal_order_id: str) -> Dict[str, Any]:
        token = self.get_access_token()
        try:
            response = self.http.post(
                f"{self.base_url}/v2/checkout/orders/{_path_segment(paypal_order_id)}/capture",
                headers=self._bearer(token),
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise PaymentVerificationTimeout("Timed out capturing the PayPal order")
        except requests.RequestException as exc:
            self.logger.error("PayPal capture failed: %s", exc)
            raise PaymentNotCompleted("Failed to capture payment")

        if response.status_code not in (200, 201):
            raise PaymentNotCompleted(
                "Failed to capture payment",
                details={"paypal_order_id": paypal_order_id, "status": response.status_code},
            )
        return _json_or_empty(response)

    @staticmethod
    def _bearer(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


class PaymentVerifier:
    """Read-only confirmation that a captured PayPal order matches the computed total."""

    def __init__(
        self,
        client: Optional[PayPalClient] = None,
        config: type[Config] = Config,
    ) -> None:
        self.config = config
        self.client = client or PayPalClient(config)
        self.tolerance = Decimal(str(config.PAYMENT_AMOUNT_TOLERANCE))
        self.logger = logging.getLogger(__name__)

    def verify(self, payment_reference: Optional[str], expected_total: Decimal) -> bool:
        """
        Return True when the payment was verified, False when no reference was
        supplied (manual/test completion path). Raises a ``PaymentError``
        subclass on any verification failure.
        """
        if not payment_reference:
            self.logger.info("Checkout proceeding without payment verification")
            increment_counter("payment_verifications_total", labels={"result": "skipped"})
            return False

        token = self.client.get_access_token()
        paypal_order = self.client.get_order(payment_reference, token)

        status = str(paypal_order.get("status", "")).upper()
        if status not in COMPLETED_STATUSES:
            increment_counter("payment_verifications_total", labels={"result": "not_completed"})
            raise PaymentNotCompleted(
                "PayPal payment not completed",
                details={"paypal_order_id": payment_reference, "status": status or None},
            )

        paid = extract_amount(paypal_order)
        expected = to_money(expected_total)
        if paid is None or abs(paid - expected) > self.tolerance:
            increment_counter("payment_verifications_total", labels={"result": "amount_mismatch"})
            self.logger.warning(
                "Payment amount mismatch",
                extra={"paypal_order_id": payment_reference, "paid": str(paid), "expected": str(expected)},
            )
            raise PaymentAmountMismatch(
                "Payment amount mismatch",
                details={
                    "paypal_order_id": payment_reference,
                    "paid": None if paid is None else str(paid),
                    "expected": str(expected),
                },
            )

        increment_counter("payment_verifications_total", labels={"result": "verified"})
        return True


def extract_amount(paypal_order: Dict[str, Any]) -> Optional[Decimal]:
    """Amount of the first purchase unit, as a Decimal, or None if absent."""
    units = paypal_order.get("purchase_units") or []
    if not units:
        return None
    amount = (units[0] or {}).get("amount") or {}
    value = amount.get("value")
    if value is None:
        return None
    try:
        return parse_money(value)
    except ValueError:
        return None


def _json_or_empty(response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _path_segment(value: str) -> str:
    # Order ids are client-supplied and must stay inside a single path segment
    return requests.utils.quote(str(value), safe="")
