"""Verification-code delivery. The OTP flow only needs ``send_code``."""
import logging

import requests

import config

logger = logging.getLogger(__name__)


class SmsError(Exception):
    pass


class Fast2SmsSender:
    def __init__(self, api_key: str, url: str = config.FAST2SMS_API_URL):
        self.api_key = api_key
        self.url = url

    def send_code(self, isd_code: str, phone_number: str, code: str):
        try:
            response = requests.get(
                self.url,
                params={
                    "authorization": self.api_key,
                    "variables_values": code,
                    "route": "otp",
                    "numbers": phone_number,
                },
                timeout=10,
            )
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise SmsError(str(exc))
        if response.status_code >= 400 or payload.get("return") is False:
            raise SmsError(f"Fast2SMS error: {payload}")


class TwilioSender:
    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def send_code(self, isd_code: str, phone_number: str, code: str):
        url = f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            response = requests.post(
                url,
                auth=(self.account_sid, self.auth_token),
                data={
                    "To": f"+{isd_code}{phone_number}",
                    "From": self.from_number,
                    "Body": f"Your verification code is {code}. It expires in {config.OTP_EXPIRY_MINUTES} minutes.",
                },
                timeout=10,
            )
        except requests.RequestException as exc:
            raise SmsError(str(exc))
        if response.status_code >= 400:
            raise SmsError(f"Twilio error: {response.text}")


class ConsoleSender:
    """Development sender: writes the code to the log instead of texting it."""

    def send_code(self, isd_code: str, phone_number: str, code: str):
        logger.info("OTP for +%s-%s: %s", isd_code, phone_number, code)


def get_sms_sender():
    provider = config.SMS_PROVIDER.lower()
    if provider == "console":
        return ConsoleSender()
    if provider == "twilio":
        if not (config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_PHONE_NUMBER):
            return None
        return TwilioSender(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN, config.TWILIO_PHONE_NUMBER)
    if not config.FAST2SMS_API_KEY:
        return None
    return Fast2SmsSender(config.FAST2SMS_API_KEY)
