"""
בדיקות לשכבת ההפשטה של ספק WhatsApp.

מכסה:
- BaseWhatsAppProvider — ממשק אבסטרקטי
- CloudApiProvider — טקסט (pywa), בקשת תשלום (httpx), retry, circuit breaker
- Provider Factory — ספק לכל tenant
"""
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from httpx import Response

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, get_whatsapp_circuit_breaker
from app.core.exceptions import CircuitBreakerOpenError, WhatsAppError
from app.domain.services.credential_service import MessagingCredentials
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from app.domain.services.whatsapp.cloud_api_provider import CloudApiProvider
from app.domain.services.whatsapp.provider_factory import get_whatsapp_provider


def _response(status_code: int, body: dict | None = None) -> MagicMock:
    response = MagicMock(spec=Response)
    response.status_code = status_code
    response.content = b"{}" if body is not None else b""
    response.json = MagicMock(return_value=body or {})
    response.text = "error body"
    return response


def _mock_client(mock_client_cls: MagicMock, post: AsyncMock) -> AsyncMock:
    mock_instance = AsyncMock()
    mock_instance.post = post
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_instance
    return mock_instance


# ============================================================================
# BaseWhatsAppProvider — ממשק אבסטרקטי
# ============================================================================


class TestBaseProviderInterface:

    @pytest.mark.unit
    def test_cannot_instantiate_abstract_provider(self) -> None:
        with pytest.raises(TypeError):
            BaseWhatsAppProvider()  # type: ignore[abstract]

    @pytest.mark.unit
    def test_concrete_provider_must_implement_all_methods(self) -> None:
        """ספק בלי send_payment_request — TypeError."""

        class IncompleteProvider(BaseWhatsAppProvider):
            async def send_text(self, to: str, text: str) -> None:
                return None

            @property
            def provider_name(self) -> str:
                return "incomplete"

        with pytest.raises(TypeError):
            IncompleteProvider()  # type: ignore[abstract]


# ============================================================================
# CloudApiProvider
# ============================================================================


def _make_provider(failure_threshold: int = 5) -> tuple[CloudApiProvider, CircuitBreaker]:
    cb = CircuitBreaker("test_wa", CircuitBreakerConfig(failure_threshold=failure_threshold))
    provider = CloudApiProvider(
        access_token="EAAG-test-token",
        phone_number_id="1098765",
        circuit_breaker=cb,
    )
    return provider, cb


async def _send_payment_request(provider: CloudApiProvider) -> None:
    await provider.send_payment_request(
        "919876543210",
        amount_paise=49900,
        currency="INR",
        description="Blue kurta",
        reference_id="pay_abc",
        metadata={"gateway_order_id": "order_1"},
    )


class TestCloudApiProviderText:
    """טקסט נשלח דרך pywa client"""

    @pytest.mark.unit
    async def test_send_text(self) -> None:
        provider, _ = _make_provider()
        provider._client = AsyncMock()

        await provider.send_text(to="919876543210", text="✅ Payment received!")

        provider._client.send_message.assert_awaited_once_with(to="919876543210", text="✅ Payment received!")

    @pytest.mark.unit
    def test_client_built_lazily_with_tenant_credentials(self) -> None:
        provider, _ = _make_provider()
        assert provider._client is None

        with patch("pywa_async.WhatsApp") as mock_whatsapp:
            client = provider._get_client()
            assert provider._get_client() is client

        mock_whatsapp.assert_called_once_with(phone_id="1098765", token="EAAG-test-token")

    @pytest.mark.unit
    async def test_retry_then_success(self) -> None:
        provider, _ = _make_provider()
        provider._client = AsyncMock()
        provider._client.send_message.side_effect = [RuntimeError("graph 503"), None]

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await provider.send_text(to="919876543210", text="hi")

        assert provider._client.send_message.await_count == 2
        mock_sleep.assert_awaited_once_with(1)

    @pytest.mark.unit
    async def test_gives_up_after_max_retries(self) -> None:
        provider, _ = _make_provider()
        provider._client = AsyncMock()
        provider._client.send_message.side_effect = RuntimeError("graph down")

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(WhatsAppError) as exc_info:
                await provider.send_text(to="919876543210", text="hi")

        assert provider._client.send_message.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]
        assert exc_info.value.details["attempts"] == 3
        assert exc_info.value.details["error"] == "graph down"
        # מספר ממוסך בלוג ובפרטי השגיאה
        assert exc_info.value.details["to"] != "919876543210"

    @pytest.mark.unit
    async def test_failures_open_circuit(self) -> None:
        provider, cb = _make_provider(failure_threshold=1)
        provider._client = AsyncMock()
        provider._client.send_message.side_effect = RuntimeError("graph down")

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(WhatsAppError):
                await provider.send_text(to="919876543210", text="hi")
            with pytest.raises(CircuitBreakerOpenError):
                await provider.send_text(to="919876543210", text="hi")

        assert cb.is_open
        assert provider._client.send_message.await_count == 3


class TestCloudApiProviderPaymentRequest:
    """בקשת תשלום interactive נשלחת ל-Graph API עם httpx"""

    @pytest.mark.unit
    async def test_send_payment_request_payload(self) -> None:
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            client = _mock_client(mock_client, AsyncMock(return_value=_response(200, {})))

            await _send_payment_request(provider)

            url = client.post.call_args[0][0]
            assert url.endswith("/1098765/messages")
            assert client.post.call_args[1]["headers"]["Authorization"] == "Bearer EAAG-test-token"
            payload = client.post.call_args[1]["json"]
            assert payload["type"] == "interactive"
            interactive = payload["interactive"]
            assert interactive["type"] == "payment"
            params = interactive["action"]["parameters"]
            assert params["reference_id"] == "pay_abc"
            assert params["payment_configuration"] == "razorpay"
            assert params["currency"] == "INR"
            assert params["total_amount"] == {"value": 49900, "offset": 100}
            assert params["order"]["items"][0]["quantity"] == 1
            assert params["metadata"] == {"gateway_order_id": "order_1"}

    @pytest.mark.unit
    async def test_retry_on_transient_status(self) -> None:
        """503 ואז 200 — שני ניסיונות, backoff אחד"""
        provider, _ = _make_provider()
        post = AsyncMock(side_effect=[_response(503), _response(200, {})])

        with patch("httpx.AsyncClient") as mock_client, \
                patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            _mock_client(mock_client, post)

            await _send_payment_request(provider)

        assert post.call_count == 2
        mock_sleep.assert_awaited_once_with(1)

    @pytest.mark.unit
    async def test_gives_up_after_max_retries(self) -> None:
        provider, _ = _make_provider()
        post = AsyncMock(return_value=_response(503))

        with patch("httpx.AsyncClient") as mock_client, \
                patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            _mock_client(mock_client, post)

            with pytest.raises(WhatsAppError) as exc_info:
                await _send_payment_request(provider)

        assert post.call_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]
        assert exc_info.value.details["status_code"] == 503

    @pytest.mark.unit
    async def test_no_retry_on_client_error(self) -> None:
        provider, _ = _make_provider()
        post = AsyncMock(return_value=_response(400))

        with patch("httpx.AsyncClient") as mock_client, \
                patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            _mock_client(mock_client, post)

            with pytest.raises(WhatsAppError):
                await _send_payment_request(provider)

        assert post.call_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.unit
    async def test_timeout_retried_then_raises(self) -> None:
        provider, _ = _make_provider()
        post = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

        with patch("httpx.AsyncClient") as mock_client, \
                patch("asyncio.sleep", new_callable=AsyncMock):
            _mock_client(mock_client, post)

            with pytest.raises(WhatsAppError) as exc_info:
                await _send_payment_request(provider)

        assert post.call_count == 3
        assert exc_info.value.details["timeout"] is True

    @pytest.mark.unit
    async def test_failures_open_circuit(self) -> None:
        provider, cb = _make_provider(failure_threshold=1)
        post = AsyncMock(return_value=_response(500))

        with patch("httpx.AsyncClient") as mock_client, \
                patch("asyncio.sleep", new_callable=AsyncMock):
            _mock_client(mock_client, post)

            with pytest.raises(WhatsAppError):
                await _send_payment_request(provider)
            with pytest.raises(CircuitBreakerOpenError):
                await _send_payment_request(provider)

        assert cb.is_open
        assert post.call_count == 1


# ============================================================================
# Provider Factory
# ============================================================================


class TestProviderFactory:

    @pytest.mark.unit
    def test_builds_cloud_api_provider_per_tenant(self) -> None:
        tenant_id = uuid.uuid4()

        provider = get_whatsapp_provider(tenant_id, MessagingCredentials("token", "1098765"))

        assert isinstance(provider, CloudApiProvider)
        assert provider.provider_name == "cloud_api"
        assert provider._circuit_breaker is get_whatsapp_circuit_breaker(tenant_id)

    @pytest.mark.unit
    def test_tenants_get_separate_breakers(self) -> None:
        creds = MessagingCredentials("token", "1098765")

        first = get_whatsapp_provider(uuid.uuid4(), creds)
        second = get_whatsapp_provider(uuid.uuid4(), creds)

        assert first._circuit_breaker is not second._circuit_breaker
