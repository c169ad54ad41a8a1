from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
import logging

from core.config import settings

logger = logging.getLogger(__name__)

class TwilioClient:
    def __init__(self, account_sid: str = None, auth_token: str = None, phone_number: str = None):
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.phone_number = phone_number if phone_number is not None else settings.TWILIO_PHONE_NUMBER
        self.client = None

        if self.account_sid and self.auth_token:
            try:
                self.client = Client(self.account_sid, self.auth_token)
                logger.info("Twilio client initialized successfully")
            except Exception as e:
                logger.error(f"Failed to initialize Twilio client: {e}")

    def is_configured(self) -> bool:
        """Check if Twilio is configured"""
        return all([self.account_sid, self.auth_token, self.phone_number]) and self.client is not None

    @staticmethod
    def format_phone_number(phone_number: str) -> str:
        # Assuming Indian numbers
        if phone_number.startswith('+'):
            return phone_number
        if phone_number.startswith('0'):
            return '+91' + phone_number[1:]
        return '+91' + phone_number

    def send_sms(self, phone_number: str, body: str) -> bool:
        """
        Send a text message
        Returns: True if sent successfully, False otherwise
        """
        if not self.is_configured():
            logger.debug("Twilio not configured, SMS not sent")
            return False

        phone_number = self.format_phone_number(phone_number)
        try:
            message = self.client.messages.create(
                body=body,
                from_=self.phone_number,
                to=phone_number
            )
            logger.info(f"SMS sent to {phone_number}, SID: {message.sid}")
            return True

        except TwilioRestException as e:
            logger.error(f"Twilio error: {e}")
            return False

    def send_order_update_sms(self, phone_number: str, order_id: int, status: str) -> bool:
        body = f"Your order #{order_id} is now {status.replace('_', ' ').lower()}."
        return self.send_sms(phone_number, body)

    def send_delivery_update_sms(self, phone_number: str, order_id: int, status: str) -> bool:
        body = f"Delivery for order #{order_id}: {status.replace('_', ' ').lower()}."
        return self.send_sms(phone_number, body)
