"""
Payment gateway clients.

PaymentGateway is the contract the orchestrator settles against; PayPalGateway
implements it over the PayPal Orders v2 REST API. Communication failures raise
GatewayError / GatewayTimeoutError. A capture the gateway declines is an
expected outcome and comes back as a GatewayCapture with completed=False.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.exceptions import GatewayError, GatewayTimeoutError

logger = logging.getLogger(__name__)

# Capture failures PayPal reports as 422 that mean "payer's money did not move"
DECLINE_ISSUES = {
    "INSTRUMENT_DECLINED",
    "PAYER_ACTION_REQUIRED",
    "ORDER_NOT_APPROVED",
    "PAYER_CANNOT_PAY",
    "TRANSACTION_REFUSED",
    "MAX_NUMBER_OF_PAYMENT_ATTEMPTS_EXCEEDED",
}


@dataclass
class GatewayOrder:
    order_id: str
    status: str
    approval_url: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayCapture:
    order_id: str
    status: str
    completed: bool
    capture_id: Optional[str] = None
    payer_id: Optional[str] = None
    payer_email: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefund:
    refund_id: str
    status: str
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):

    @abstractmethod
    async def create_order(
        self,
        reference_id: str,
        description: str,
        custom_id: Dict[str, Any],
        amount: Decimal,
        currency: str,
    ) -> GatewayOrder:
        pass

    @abstractmethod
    async def capture_order(self, order_id: str) -> GatewayCapture:
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def refund_capture(
        self,
        capture_id: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        note: Optional[str] = None,
    ) -> GatewayRefund:
        pass


class PayPalGateway(PaymentGateway):
    """PayPal Orders v2 over httpx with client-credentials OAuth."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or default_settings
        self.base_url = self.settings.paypal_base_url
        self._client = client
        self._access_token: Optional[str] = None

    async def create_order(
        self,
        reference_id: str,
        description: str,
        custom_id: Dict[str, Any],
        amount: Decimal,
        currency: str,
    ) -> GatewayOrder:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference_id,
                    "description": description,
                    "custom_id": json.dumps(custom_id),
                    "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
                }
            ],
            "application_context": {
                "brand_name": self.settings.paypal_brand_name,
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
                "return_url": self.settings.paypal_return_url,
                "cancel_url": self.settings.paypal_cancel_url,
            },
        }

        resp = await self._call(
            "POST", "/v2/checkout/orders", json=body,
            headers={"Prefer": "return=representation"}, context={"reference_id": reference_id},
        )
        data = self._json_or_raise(resp, {"reference_id": reference_id})

        order_id = data.get("id")
        if not order_id:
            raise GatewayError("Gateway returned an order without id", details={"reference_id": reference_id})

        approval_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return GatewayOrder(order_id=order_id, status=data.get("status", ""), approval_url=approval_url, raw=data)

    async def capture_order(self, order_id: str) -> GatewayCapture:
        context = {"order_id": order_id}
        resp = await self._call(
            "POST", f"/v2/checkout/orders/{order_id}/capture", json={},
            headers={"Prefer": "return=representation"}, context=context,
        )

        if resp.status_code == 422:
            issue = _first_issue(resp)
            if issue in DECLINE_ISSUES:
                logger.info("Capture declined by gateway for order %s: %s", order_id, issue)
                return GatewayCapture(order_id=order_id, status=issue, completed=False, raw=_safe_json(resp))

        data = self._json_or_raise(resp, context)
        status = data.get("status", "")
        payer = data.get("payer") or {}

        return GatewayCapture(
            order_id=order_id,
            status=status,
            completed=status == "COMPLETED",
            capture_id=extract_capture_id(data),
            payer_id=payer.get("payer_id"),
            payer_email=payer.get("email_address"),
            raw=data,
        )

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        context = {"order_id": order_id}
        resp = await self._call("GET", f"/v2/checkout/orders/{order_id}", context=context)
        return self._json_or_raise(resp, context)

    async def refund_capture(
        self,
        capture_id: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        note: Optional[str] = None,
    ) -> GatewayRefund:
        body: Dict[str, Any] = {}
        if amount is not None:
            body["amount"] = {"currency_code": currency or self.settings.paypal_currency, "value": f"{amount:.2f}"}
        if note:
            body["note_to_payer"] = note[:255]

        context = {"capture_id": capture_id}
        resp = await self._call(
            "POST", f"/v2/payments/captures/{capture_id}/refund", json=body,
            headers={"Prefer": "return=representation"}, context=context,
        )
        data = self._json_or_raise(resp, context)

        refund_id = data.get("id")
        if not refund_id:
            raise GatewayError("Gateway returned a refund without id", details=context)
        return GatewayRefund(refund_id=refund_id, status=data.get("status", ""), raw=data)

    # Transport

    async def _get_access_token(self) -> str:
        if self._access_token:
            return self._access_token

        resp = await self._send(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
            context={"step": "oauth"},
        )
        data = self._json_or_raise(resp, {"step": "oauth"})
        token = data.get("access_token")
        if not token:
            raise GatewayError("Gateway authentication returned no access token")

        self._access_token = token
        return token

    async def _call(self, method: str, path: str, context: Dict[str, Any], headers=None, **kwargs) -> httpx.Response:
        token = await self._get_access_token()
        headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        return await self._send(method, path, headers=headers, context=context, **kwargs)

    async def _send(self, method: str, path: str, context: Dict[str, Any], **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                return await self._client.request(method, url, **kwargs)
            async with httpx.AsyncClient(timeout=self.settings.paypal_timeout_seconds) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Gateway timeout on %s %s", method, path, extra=context)
            raise GatewayTimeoutError(details={**context, "path": path}) from exc
        except httpx.HTTPError as exc:
            logger.error("Gateway request failed on %s %s: %s", method, path, exc, extra=context)
            raise GatewayError(f"Payment gateway request failed: {exc}", details={**context, "path": path}) from exc

    def _json_or_raise(self, resp: httpx.Response, context: Dict[str, Any]) -> Dict[str, Any]:
        if resp.status_code >= 400:
            issue = _first_issue(resp)
            logger.error(
                "Gateway returned HTTP %s (%s) for %s",
                resp.status_code, issue, resp.request.url.path, extra=context,
            )
            raise GatewayError(
                f"Payment gateway returned HTTP {resp.status_code}",
                details={**context, "status_code": resp.status_code, "issue": issue},
            )

        data = _safe_json(resp)
        if not isinstance(data, dict):
            raise GatewayError("Payment gateway returned an unreadable response", details=context)
        return data


def extract_capture_id(order: Dict[str, Any]) -> Optional[str]:
    """Capture id from an order snapshot (purchase_units[0].payments.captures[0].id)."""
    try:
        return order["purchase_units"][0]["payments"]["captures"][0]["id"]
    except (KeyError, IndexError, TypeError):
        return None


def _safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _first_issue(resp: httpx.Response) -> Optional[str]:
    data = _safe_json(resp)
    if not isinstance(data, dict):
        return None
    details = data.get("details") or []
    if details and isinstance(details[0], dict):
        return details[0].get("issue")
    return data.get("name")
