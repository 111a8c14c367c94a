"""
Input Validation Utilities

Validation for order inputs:
- WhatsApp numbers (digits only, country code included, no +)
- Customer names and payment descriptions
- Paise amounts
"""
import re

# סכום מינימלי שה-gateway מקבל (₹1.00)
MIN_ORDER_AMOUNT_PAISE = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_CUSTOMER_NAME_LENGTH = 120


class ValidationPatterns:
    """Regex patterns for validation"""

    # WhatsApp Cloud API מצפה למספר בינלאומי ספרות בלבד, ללא +
    WHATSAPP_NUMBER = re.compile(r"^[0-9]{10,20}$")

    # Gateway ids: order_XXXX, pay_XXXX, rfnd_XXXX
    GATEWAY_ID = re.compile(r"^[A-Za-z0-9_]{1,64}$")


class WhatsAppNumberValidator:
    """WhatsApp number validation and normalization"""

    @staticmethod
    def normalize(number: str) -> str:
        """Strip the separators people paste along with a number: +91 98765-43210 -> 919876543210"""
        if not number:
            return ""
        return re.sub(r"[\s\-\(\)\+]", "", number)

    @staticmethod
    def validate(number: str) -> bool:
        if not number:
            return False
        return bool(ValidationPatterns.WHATSAPP_NUMBER.match(number))


class TextSanitizer:
    """Text sanitization for storage and outbound messages"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 1000) -> str:
        """
        Sanitize text input for safe storage.

        - Trims whitespace
        - Enforces max length
        - Removes null bytes and control characters (keeps newlines)
        - Collapses repeated spaces
        """
        if not text:
            return ""

        sanitized = TextSanitizer.remove_control_characters(text.strip())
        sanitized = re.sub(r" +", " ", sanitized)
        return sanitized[:max_length]

    @staticmethod
    def remove_control_characters(text: str) -> str:
        if not text:
            return ""
        return "".join(
            char for char in text
            if char >= " " or char in "\n\r\t"
        )


class AmountValidator:
    """Paise amount validation"""

    @staticmethod
    def validate(
        amount_paise: int,
        min_value: int = MIN_ORDER_AMOUNT_PAISE,
        max_value: int | None = None
    ) -> tuple[bool, str | None]:
        """
        Validate an integer amount in paise.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if isinstance(amount_paise, bool) or not isinstance(amount_paise, int):
            return False, "Amount must be an integer number of paise"

        if amount_paise < min_value:
            return False, f"Amount must be at least {min_value} paise"

        if max_value is not None and amount_paise > max_value:
            return False, f"Amount cannot exceed {max_value} paise"

        return True, None


# Pydantic field validators for reuse
def whatsapp_number_validator(v: str | None) -> str | None:
    """Pydantic field validator for customer WhatsApp numbers"""
    if v is None:
        return None
    normalized = WhatsAppNumberValidator.normalize(v)
    if not WhatsAppNumberValidator.validate(normalized):
        raise ValueError("customer_whatsapp must be 10-20 digits including country code")
    return normalized


def description_validator(v: str | None) -> str | None:
    """Pydantic field validator for payment descriptions"""
    if v is None:
        return None
    if len(v.strip()) > MAX_DESCRIPTION_LENGTH:
        raise ValueError(f"description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return TextSanitizer.sanitize(v, max_length=MAX_DESCRIPTION_LENGTH) or None


def customer_name_validator(v: str) -> str:
    """Pydantic field validator for customer names"""
    cleaned = TextSanitizer.sanitize(v, max_length=MAX_CUSTOMER_NAME_LENGTH)
    if not cleaned:
        raise ValueError("customer_name is required")
    return cleaned


def gateway_id_validator(v: str | None) -> str | None:
    """Pydantic field validator for ids issued by the gateway"""
    if v is None:
        return None
    v = v.strip()
    if not ValidationPatterns.GATEWAY_ID.match(v):
        raise ValueError("invalid gateway identifier")
    return v
