"""
Tests for Input Validation Utilities
"""
import pytest
from pydantic import ValidationError

from app.api.routes.orders import OrderCreate, VerifyPaymentRequest
from app.core.validation import (
    AmountValidator,
    TextSanitizer,
    ValidationPatterns,
    WhatsAppNumberValidator,
    customer_name_validator,
    description_validator,
    gateway_id_validator,
    whatsapp_number_validator,
)


class TestWhatsAppNumberValidator:
    """Tests for WhatsApp number validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("number,expected", [
        ("919876543210", True),
        ("447700900123", True),
        ("9876543210", True),
        ("123", False),
        ("+919876543210", False),  # לפני נרמול
        ("abcdefghij", False),
        ("", False),
        ("1" * 21, False),
    ])
    def test_validate(self, number: str, expected: bool):
        assert WhatsAppNumberValidator.validate(number) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,normalized", [
        ("+91 98765-43210", "919876543210"),
        ("(91) 98765 43210", "919876543210"),
        ("919876543210", "919876543210"),
        ("", ""),
    ])
    def test_normalize(self, raw: str, normalized: str):
        assert WhatsAppNumberValidator.normalize(raw) == normalized

    @pytest.mark.unit
    def test_field_validator(self):
        assert whatsapp_number_validator("+91 98765 43210") == "919876543210"
        assert whatsapp_number_validator(None) is None
        with pytest.raises(ValueError):
            whatsapp_number_validator("12-34")


class TestAmountValidator:
    """Tests for paise amount validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("amount,min_val,max_val,valid", [
        (100, 100, None, True),
        (99, 100, None, False),
        (49900, 1, 49900, True),
        (49901, 1, 49900, False),
        (1, 1, 10, True),
        (0, 1, 10, False),
    ])
    def test_validate_amount(self, amount: int, min_val: int, max_val, valid: bool):
        is_valid, error = AmountValidator.validate(amount, min_value=min_val, max_value=max_val)
        assert is_valid == valid
        assert (error is None) == valid

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", [True, 10.5, "100", None])
    def test_non_integer_rejected(self, amount):
        is_valid, error = AmountValidator.validate(amount)
        assert not is_valid
        assert error == "Amount must be an integer number of paise"


class TestTextSanitizer:
    """Tests for text sanitization"""

    @pytest.mark.unit
    def test_trims_and_collapses_spaces(self):
        assert TextSanitizer.sanitize("  Priya    Sharma  ") == "Priya Sharma"

    @pytest.mark.unit
    def test_enforces_max_length(self):
        assert len(TextSanitizer.sanitize("a" * 2000, max_length=50)) == 50

    @pytest.mark.unit
    def test_remove_control_characters(self):
        text = "Hello\x00World\x07!\nNew line"
        assert TextSanitizer.remove_control_characters(text) == "HelloWorld!\nNew line"

    @pytest.mark.unit
    def test_keeps_unicode(self):
        assert TextSanitizer.sanitize("कुर्ता ✅ חולצה") == "कुर्ता ✅ חולצה"

    @pytest.mark.unit
    def test_empty(self):
        assert TextSanitizer.sanitize(None) == ""
        assert TextSanitizer.sanitize("") == ""


class TestFieldValidators:
    """Pydantic field validators used by the order schemas"""

    @pytest.mark.unit
    def test_customer_name(self):
        assert customer_name_validator("  Priya  ") == "Priya"
        with pytest.raises(ValueError):
            customer_name_validator("   ")

    @pytest.mark.unit
    def test_description(self):
        assert description_validator(None) is None
        assert description_validator("   ") is None
        assert description_validator(" Blue kurta ") == "Blue kurta"
        with pytest.raises(ValueError):
            description_validator("x" * 501)

    @pytest.mark.unit
    @pytest.mark.parametrize("value,valid", [
        ("order_Nx5ReKqNDHhYBx", True),
        ("pay_29QQoUBi66xm2f", True),
        ("order id", False),
        ("order-1", False),
        ("", False),
        ("x" * 65, False),
    ])
    def test_gateway_id(self, value: str, valid: bool):
        assert bool(ValidationPatterns.GATEWAY_ID.match(value)) == valid
        if valid:
            assert gateway_id_validator(f" {value} ") == value
        else:
            with pytest.raises(ValueError):
                gateway_id_validator(value)


class TestOrderSchemas:
    """הסכמות של ה-API מפעילות את ה-validators"""

    @pytest.mark.unit
    def test_order_create_normalizes(self):
        order = OrderCreate(
            customer_name=" Priya ",
            customer_whatsapp="+91 98765 43210",
            amount_paise=100,
            description="  ",
        )
        assert order.customer_name == "Priya"
        assert order.customer_whatsapp == "919876543210"
        assert order.description is None

    @pytest.mark.unit
    def test_order_create_minimum_amount(self):
        with pytest.raises(ValidationError):
            OrderCreate(customer_name="Priya", customer_whatsapp="919876543210", amount_paise=99)

    @pytest.mark.unit
    def test_verify_request_rejects_bad_ids(self):
        with pytest.raises(ValidationError):
            VerifyPaymentRequest(gateway_order_id="order 1", gateway_payment_id="pay_1", signature="abc")
