# credit_engine/services/phone.py
import re

from credit_engine.services.errors import InvalidBuyer

_LOCAL_PHONE = re.compile(r"^0[67]\d{8}$")


def format_tanzanian_phone(phone: str) -> str:
    """Normalise to the local 0XXXXXXXXX form ZenoPay expects."""
    cleaned = re.sub(r"[\s\-]", "", phone or "")
    if cleaned.startswith("+255"):
        return "0" + cleaned[4:]
    if cleaned.startswith("255"):
        return "0" + cleaned[3:]
    return cleaned


def validate_tanzanian_phone(phone: str) -> bool:
    return bool(_LOCAL_PHONE.match(phone or ""))


def normalize_buyer_phone(phone: str) -> str:
    formatted = format_tanzanian_phone(phone)
    if not validate_tanzanian_phone(formatted):
        raise InvalidBuyer("Invalid phone number format. Please use format: 07XXXXXXXX")
    return formatted
