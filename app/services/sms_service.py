import logging
from datetime import date
from typing import Optional, Dict

import httpx

logger = logging.getLogger(__name__)


class SMSService:
    """SMS service for customer notifications. Never raises."""

    def __init__(
        self,
        api_url: str = "",
        api_key: str = "",
        sender_id: str = "YOLASISTAN"
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender_id = sender_id

    @staticmethod
    def normalize_phone(phone: str) -> str:
        phone = (phone or "").replace(" ", "").replace("-", "").replace("(", "").replace(")", "")
        if phone.startswith("+90"):
            phone = phone[3:]
        elif phone.startswith("90") and len(phone) == 12:
            phone = phone[2:]
        elif phone.startswith("0") and len(phone) == 11:
            phone = phone[1:]
        return phone

    async def send_sms(
        self,
        phone: str,
        message: str,
        variables: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Send an SMS.

        Args:
            phone: Phone number, any common Turkish format
            message: Message text
            variables: Extra provider fields

        Returns:
            True if sent successfully
        """
        if not self.api_key:
            logger.warning("SMS API key not configured, skipping SMS")
            return False

        phone = self.normalize_phone(phone)
        if not phone:
            logger.warning("SMS skipped: empty phone number")
            return False

        try:
            headers = {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json"
            }
            payload = {
                "sender": self.sender_id,
                "phone": f"90{phone}",
                "message": message,
                **(variables or {})
            }

            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers=headers,
                    timeout=10.0
                )

                if response.status_code == 200:
                    logger.info(f"SMS sent to {phone}")
                    return True
                else:
                    logger.error(f"SMS failed: {response.text}")
                    return False

        except Exception as e:
            logger.error(f"Failed to send SMS to {phone}: {e}")
            return False

    async def send_sale_confirmation_sms(
        self,
        phone: str,
        customer_name: str,
        policy_number: str,
        plate: str,
        end_date: date
    ) -> bool:
        """Send the policy confirmation SMS after a sale commits."""
        message = (
            f"Dear {customer_name}, your roadside assistance policy {policy_number} "
            f"for {plate} is active until {end_date.strftime('%d.%m.%Y')}."
        )
        return await self.send_sms(phone, message)


def get_sms_service() -> SMSService:
    """Get configured SMS service instance."""
    from app.config import settings

    return SMSService(
        api_url=getattr(settings, 'SMS_API_URL', ''),
        api_key=getattr(settings, 'SMS_API_KEY', ''),
        sender_id=getattr(settings, 'SMS_SENDER_ID', 'YOLASISTAN')
    )
