from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from loguru import logger
from twilio.rest import Client

from ..database import settings
from ..models.request import EmergencyRequest


@dataclass
class SmsNotification:
    to: str
    body: str


def normalize_phone_number(phone: str, country_code: str | None = None) -> str:
    """
    Normalize a phone number to E.164 for Twilio.

    Numbers stored on accounts are 10 bare digits and get the configured
    country code; numbers that already start with ``+`` keep their own.

    Examples:
        "9876543210" -> "+919876543210"
        "+1 (555) 123-4567" -> "+15551234567"
    """
    if not phone:
        return phone
    if phone.startswith("+"):
        return "+" + re.sub(r"\D", "", phone[1:])
    digits = re.sub(r"\D", "", phone)
    prefix = country_code if country_code is not None else settings.sms_country_code
    return prefix + digits


def donor_alert_body(request: EmergencyRequest) -> str:
    return (
        f"BloodNet: {request.urgency_level.value.upper()} need for {request.quantity} unit(s) of "
        f"{request.blood_group.value} at {request.hospital}, {request.location.city}. "
        "Please contact the hospital if you can donate."
    )


class NotificationService:
    def __init__(self, client: Optional[Client] = None) -> None:
        if client is not None:
            self.client: Optional[Client] = client
        elif not settings.twilio_sid or not settings.twilio_token:
            logger.warning("Twilio credentials missing; SMS notifications will be mocked.")
            self.client = None
        else:
            self.client = Client(settings.twilio_sid, settings.twilio_token)
        self.sender_phone = settings.twilio_phone or "+1234567890"

    async def send_sms(self, message: SmsNotification) -> bool:
        normalized_phone = normalize_phone_number(message.to)
        if self.client is None:
            logger.info("Mock SMS: {} -> {}", normalized_phone, message.body)
            return True
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self.client.messages.create(
                    to=normalized_phone,
                    from_=self.sender_phone,
                    body=message.body,
                ),
            )
        except Exception as exc:
            logger.warning("SMS delivery failed for {}: {}", normalized_phone, exc)
            return False
        logger.info("SMS sent to {}", normalized_phone)
        return True

    async def alert_donors(self, request: EmergencyRequest, donors: Iterable[Dict[str, Any]]) -> int:
        """Text every matching donor about a new request. Returns how many were delivered."""
        body = donor_alert_body(request)
        delivered = 0
        for donor in donors:
            phone = donor.get("phone")
            if not phone:
                continue
            if await self.send_sms(SmsNotification(to=phone, body=body)):
                delivered += 1
        logger.info("Alerted {} donor(s) about request {}", delivered, request.id)
        return delivered


notification_service = NotificationService()
