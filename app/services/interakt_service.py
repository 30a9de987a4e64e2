"""
Interakt public message API (WhatsApp templates), used for checkout OTPs.
"""
import logging
from typing import Any

from app.services.http_client import post_no_retry, safe_json

logger = logging.getLogger(__name__)

INTERAKT_MESSAGE_URL = "https://api.interakt.ai/v1/public/message/"
OTP_TEMPLATE = "checkout_otp_verification"


class InteraktError(Exception):
    def __init__(self, status_code: int, details: Any = None):
        super().__init__(f"Interakt API error {status_code}")
        self.status_code = status_code
        self.details = details


async def send_otp(api_key: str, phone_number: str, otp: str) -> dict:
    """Send the OTP template to a +91 number. Raises InteraktError on a non-2xx reply."""
    body = {
        "phoneNumber": phone_number[3:],
        "countryCode": "+91",
        "type": "Template",
        "template": {
            "name": OTP_TEMPLATE,
            "languageCode": "en",
            "bodyValues": [otp],
            "buttonValues": {"0": ["checkout"]},
        },
    }
    headers = {"Authorization": f"Basic {api_key}", "Content-Type": "application/json"}
    resp = await post_no_retry(INTERAKT_MESSAGE_URL, json=body, headers=headers)
    data = safe_json(resp)
    if resp.status_code >= 400:
        logger.warning("Interakt API error %s: %s", resp.status_code, data or resp.text[:200])
        raise InteraktError(resp.status_code, data)
    return data or {}
