"""M-Pesa (Daraja) Lipa Na M-Pesa Online client.

Only the STK push flow is used by checkout: fetch an OAuth token, send the push
request, and later verify the callback Safaricom posts back.
"""

import base64
import hashlib
import hmac
import json
import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from eshop.core.config import settings
from eshop.core.errors import InvalidPhoneNumber

logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^254[17]\d{8}$")


class MpesaError(Exception):
    """The gateway could not be reached, timed out or refused the request."""


def generate_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


def normalize_phone(phone: str) -> str:
    """Return the 2547XXXXXXXX / 2541XXXXXXXX form Daraja expects."""
    digits = re.sub(r"[\s\-()]", "", phone or "").lstrip("+")
    if digits.startswith("0") and len(digits) == 10:
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        digits = "254" + digits
    if not _PHONE_RE.match(digits):
        raise InvalidPhoneNumber(phone)
    return digits


def callback_signature(data: Dict[str, Any]) -> str:
    body = json.dumps(data, separators=(",", ":"))
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def validate_callback(data: Dict[str, Any], signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(callback_signature(data), signature)


def _json_body(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as e:
        raise MpesaError(f"Invalid gateway response from {resp.request.url.path}") from e
    if not isinstance(data, dict):
        raise MpesaError(f"Invalid gateway response from {resp.request.url.path}")
    return data


class MpesaClient:
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.BaseTransport] = None) -> "MpesaClient":
        return cls(
            base_url=settings.MPESA_BASE_URL,
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            shortcode=settings.MPESA_SHORTCODE,
            passkey=settings.MPESA_PASSKEY,
            callback_url=settings.MPESA_CALLBACK_URL,
            timeout=settings.MPESA_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _access_token(self, client: httpx.Client) -> str:
        resp = client.get(
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        resp.raise_for_status()
        token = _json_body(resp).get("access_token")
        if not token:
            raise MpesaError("No access token in OAuth response")
        return token

    def stk_push(self, phone: str, amount: float, reference: str, description: str) -> Dict[str, Any]:
        timestamp = generate_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": generate_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            # Daraja only takes whole amounts
            "Amount": int(math.ceil(amount)),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            # Daraja caps these at 12 and 13 characters
            "AccountReference": reference[-12:],
            "TransactionDesc": description[:13],
        }
        try:
            with self._client() as client:
                token = self._access_token(client)
                resp = client.post(
                    "/mpesa/stkpush/v1/processrequest",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                if resp.status_code >= 400:
                    try:
                        detail = _json_body(resp).get("errorMessage") or resp.text
                    except MpesaError:
                        detail = resp.text
                    raise MpesaError(f"STK Push failed: {detail}")
                data = _json_body(resp)
        except httpx.TimeoutException as e:
            raise MpesaError("STK Push timed out") from e
        except httpx.HTTPError as e:
            raise MpesaError(f"STK Push failed: {e}") from e
        logger.info("STK push sent for %s (MerchantRequestID=%s)", reference, data.get("MerchantRequestID"))
        return data
