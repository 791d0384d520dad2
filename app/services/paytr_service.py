"""
PayTR iFrame API Integration Service.

PayTR is asynchronous:
1. Token request: we ask PayTR for a signed iframe token for a sale
2. Iframe: the frontend shows PayTR's payment form with that token
3. Notification: PayTR POSTs the result to our callback URL (possibly
   late, duplicated, or never)

Both hashes are bit-exact contracts with PayTR:
- token: base64(HMAC-SHA256(key, merchant_id + user_ip + merchant_oid + email
  + payment_amount + user_basket + no_installment + max_installment
  + currency + test_mode + salt))
- callback: base64(HMAC-SHA256(key, merchant_oid + salt + status + total_amount))

API Docs: https://dev.paytr.com/iframe-api
"""
import base64
import hashlib
import hmac
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict, Any
from urllib.parse import urlencode

import httpx
from fastapi import Request

from app.config import settings
from app.core.exceptions import SettlementError, ErrorCode, UpstreamUnavailableError

logger = logging.getLogger(__name__)

# PayTR rejects an empty user_address
DEFAULT_USER_ADDRESS = "unspecified"

# Positions where the dashes of a canonical UUID are re-inserted
UUID_DASH_OFFSETS = (8, 12, 16, 20)

_NON_ALNUM = re.compile(r"[^0-9A-Za-z]")
_HEX32 = re.compile(r"^[0-9a-fA-F]{32}$")


@dataclass
class BasketItem:
    """One basket line: [name, unit price with 2 decimals, quantity]."""
    name: str
    price: Decimal
    quantity: int = 1


@dataclass
class PayTRTokenRequest:
    """Input for an iframe token request."""
    merchant_oid: str  # Internal sale id (sanitized before sending)
    email: str
    payment_amount: int  # Minor units (kuruş): 34.56 TL -> 3456
    user_basket: str  # Base64 encoded JSON basket
    user_ip: str
    currency: Optional[str] = None
    user_name: Optional[str] = None
    user_address: Optional[str] = None
    user_phone: Optional[str] = None
    merchant_ok_url: Optional[str] = None
    merchant_fail_url: Optional[str] = None
    no_installment: int = 0
    max_installment: int = 0
    timeout_limit: Optional[int] = None
    lang: Optional[str] = None
    test_mode: Optional[int] = None
    debug_on: Optional[int] = None


@dataclass
class PayTRTokenResult:
    """Successful token response."""
    token: str
    merchant_oid: str  # Sanitized id as sent to PayTR
    iframe_url: str
    is_mock: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)


# ==================== PURE HELPERS ====================

def sanitize_merchant_oid(merchant_oid: str) -> str:
    """
    Strip separators PayTR does not accept in merchant_oid.

    "10b561c9-5160-4c83-b0b8-4f675673a192" -> "10b561c951604c83b0b84f675673a192"
    """
    return _NON_ALNUM.sub("", str(merchant_oid))


def restore_merchant_oid(sanitized_oid: str) -> str:
    """
    Recover the internal sale id from a sanitized merchant_oid.

    Re-inserts the dashes at the fixed UUID offsets.
    """
    value = (sanitized_oid or "").strip()
    if not _HEX32.match(value):
        raise SettlementError(
            f"Unrecognised merchant_oid: {sanitized_oid!r}",
            details={"merchant_oid": sanitized_oid},
        )
    parts = []
    previous = 0
    for offset in UUID_DASH_OFFSETS:
        parts.append(value[previous:offset])
        previous = offset
    parts.append(value[previous:])
    return "-".join(parts).lower()


def to_minor_units(amount) -> int:
    """Major to minor currency units: Decimal('34.56') -> 3456."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount) -> Decimal:
    """Minor to major currency units: '3456' -> Decimal('34.56')."""
    return (Decimal(str(amount)) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def create_basket(items: List[BasketItem]) -> str:
    """Base64 encode the basket as [["name", "price.2f", qty], ...]."""
    basket = [
        [item.name, f"{Decimal(str(item.price or 0)):.2f}", item.quantity]
        for item in items
    ]
    payload = json.dumps(basket, separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def _field(value: Any) -> str:
    """Canonical string form of one hash field; absent values become ''."""
    if value is None:
        return ""
    return str(value)


def hmac_base64(key: str, message: str) -> str:
    digest = hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def build_token_hash_str(
    merchant_id: str,
    user_ip: str,
    merchant_oid: str,
    email: str,
    payment_amount: Any,
    user_basket: str,
    no_installment: Any,
    max_installment: Any,
    currency: Optional[str],
    test_mode: Any,
) -> str:
    """Concatenate the token fields in PayTR's fixed order."""
    return "".join(
        _field(v) for v in (
            merchant_id,
            user_ip,
            merchant_oid,
            email,
            payment_amount,
            user_basket,
            no_installment,
            max_installment,
            currency,
            test_mode,
        )
    )


def get_user_ip(request: Request) -> str:
    """
    Resolve the caller IP PayTR requires.

    Order: first X-Forwarded-For hop, X-Real-IP, socket peer.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
        if ip:
            return ip

    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    if request.client and request.client.host:
        host = request.client.host
        if host in ("::1", "::ffff:127.0.0.1"):
            return "127.0.0.1"
        if host != "::":
            return host

    logger.warning("Caller IP could not be determined, using 127.0.0.1")
    return "127.0.0.1"


# ==================== SERVICE ====================

class PayTRService:
    """
    Service for PayTR iframe token requests and callback verification.

    Usage:
        service = PayTRService()
        result = await service.get_token(PayTRTokenRequest(...))
        ok = service.verify_callback_hash(oid, status, total_amount, hash)

    get_token has no side effects and may be retried after a timeout.
    """

    def __init__(
        self,
        merchant_id: Optional[str] = None,
        merchant_key: Optional[str] = None,
        merchant_salt: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.merchant_id = merchant_id if merchant_id is not None else settings.PAYTR_MERCHANT_ID
        self.merchant_key = merchant_key if merchant_key is not None else settings.PAYTR_MERCHANT_KEY
        self.merchant_salt = merchant_salt if merchant_salt is not None else settings.PAYTR_MERCHANT_SALT
        self.base_url = (base_url or settings.PAYTR_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYTR_TIMEOUT_SECONDS
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.merchant_id and self.merchant_key and self.merchant_salt)

    def iframe_url(self, token: str) -> str:
        return f"{self.base_url}/odeme/guvenli/{token}"

    def create_token(self, hash_str: str) -> str:
        """paytr_token = base64(HMAC-SHA256(key, hash_str + salt))."""
        return hmac_base64(self.merchant_key, hash_str + _field(self.merchant_salt))

    def callback_hash(self, merchant_oid: str, status: str, total_amount: str) -> str:
        return hmac_base64(
            self.merchant_key,
            f"{merchant_oid}{self.merchant_salt}{status}{total_amount}",
        )

    def verify_callback_hash(
        self,
        merchant_oid: str,
        status: str,
        total_amount: str,
        received_hash: Optional[str],
    ) -> bool:
        """
        Verify a callback notification.

        Args:
            merchant_oid: Sanitized order id as PayTR echoes it
            status: 'success' or 'failed'
            total_amount: Settled amount in minor units, as a string
            received_hash: Hash posted by PayTR

        Returns:
            True if the hash matches
        """
        if not received_hash or not self.merchant_key:
            return False
        expected = self.callback_hash(merchant_oid, status, total_amount)
        return hmac.compare_digest(expected, received_hash)

    def redirect_urls(self, sale_id: uuid.UUID) -> Dict[str, str]:
        """Success/fail URLs carrying the internal sale id for correlation."""
        query = urlencode({"sale_id": str(sale_id)})
        return {
            "merchant_ok_url": f"{settings.FRONTEND_URL}/payment/success?{query}",
            "merchant_fail_url": f"{settings.FRONTEND_URL}/payment/fail?{query}",
        }

    def build_post_data(self, request: PayTRTokenRequest) -> Dict[str, Any]:
        """Build the form body for /odeme/api/get-token, including paytr_token."""
        merchant_oid = sanitize_merchant_oid(request.merchant_oid)
        currency = request.currency or settings.PAYTR_CURRENCY
        email = (request.email or "").strip()
        user_ip = (request.user_ip or "").strip()
        test_mode = request.test_mode if request.test_mode is not None else settings.PAYTR_TEST_MODE

        hash_str = build_token_hash_str(
            merchant_id=self.merchant_id,
            user_ip=user_ip,
            merchant_oid=merchant_oid,
            email=email,
            payment_amount=request.payment_amount,
            user_basket=request.user_basket,
            no_installment=request.no_installment,
            max_installment=request.max_installment,
            currency=currency,
            test_mode=test_mode,
        )

        post_data: Dict[str, Any] = {
            "merchant_id": self.merchant_id,
            "user_ip": user_ip,
            "merchant_oid": merchant_oid,
            "email": email,
            "payment_amount": str(request.payment_amount),
            "paytr_token": self.create_token(hash_str),
            "user_basket": request.user_basket,
            "no_installment": request.no_installment,
            "max_installment": request.max_installment,
            "currency": currency,
            "timeout_limit": request.timeout_limit or settings.PAYTR_TIMEOUT_LIMIT_MINUTES,
            "lang": request.lang or settings.PAYTR_LANG,
            "test_mode": test_mode,
            "debug_on": request.debug_on if request.debug_on is not None else settings.PAYTR_DEBUG_ON,
            "user_address": (request.user_address or "").strip() or DEFAULT_USER_ADDRESS,
        }

        if request.user_name and request.user_name.strip():
            post_data["user_name"] = request.user_name
        if request.user_phone and request.user_phone.strip():
            post_data["user_phone"] = request.user_phone
        if request.merchant_ok_url:
            post_data["merchant_ok_url"] = request.merchant_ok_url
        if request.merchant_fail_url:
            post_data["merchant_fail_url"] = request.merchant_fail_url

        return post_data

    async def _post(self, url: str, data: Dict[str, Any]) -> httpx.Response:
        form = {key: str(value) for key, value in data.items()}
        if self._http_client is not None:
            return await self._http_client.post(url, data=form, timeout=self.timeout)
        async with httpx.AsyncClient() as client:
            return await client.post(url, data=form, timeout=self.timeout)

    async def get_token(self, request: PayTRTokenRequest) -> PayTRTokenResult:
        """
        Request an iframe token from PayTR.

        Raises:
            UpstreamUnavailableError: timeout, connection error or non-200 response
            SettlementError(GATEWAY_REJECTED): PayTR answered with status != success
        """
        merchant_oid = sanitize_merchant_oid(request.merchant_oid)

        if not self.is_configured:
            logger.warning("PayTR credentials not configured, returning mock token")
            token = f"MOCK_TOKEN_{int(time.time() * 1000)}"
            return PayTRTokenResult(
                token=token,
                merchant_oid=merchant_oid,
                iframe_url=self.iframe_url(token),
                is_mock=True,
            )

        post_data = self.build_post_data(request)

        try:
            response = await self._post(f"{self.base_url}/odeme/api/get-token", post_data)
        except httpx.TimeoutException as e:
            logger.error(f"PayTR token request timed out for {merchant_oid}: {e}")
            raise UpstreamUnavailableError("PayTR token request timed out")
        except httpx.HTTPError as e:
            logger.error(f"PayTR token request failed for {merchant_oid}: {e}")
            raise UpstreamUnavailableError(f"PayTR token request failed: {e}")

        if response.status_code != 200:
            logger.error(f"PayTR token request returned {response.status_code}: {response.text}")
            raise UpstreamUnavailableError(
                f"PayTR returned HTTP {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            logger.error(f"PayTR returned a non-JSON body: {response.text[:200]}")
            raise UpstreamUnavailableError("PayTR returned an unreadable response")

        if data.get("status") != "success" or not data.get("token"):
            reason = data.get("reason") or "PayTR token could not be obtained"
            logger.warning(f"PayTR rejected token request for {merchant_oid}: {reason}")
            raise SettlementError(
                reason,
                status_code=400,
                code=ErrorCode.GATEWAY_REJECTED,
                details={"merchant_oid": merchant_oid},
            )

        token = data["token"]
        logger.info(f"PayTR token issued for {merchant_oid}")
        return PayTRTokenResult(
            token=token,
            merchant_oid=merchant_oid,
            iframe_url=self.iframe_url(token),
            raw=data,
        )


def get_paytr_service() -> PayTRService:
    """Get configured PayTR service instance."""
    return PayTRService()
