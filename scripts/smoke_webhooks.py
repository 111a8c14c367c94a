"""
Smoke tests against a running app instance.

Runs lightweight HTTP checks:
- GET /health
- POST /api/webhooks/razorpay (signed sample event)

האירוע מפנה ל-gateway order שלא קיים, ולכן התשובה הצפויה היא 200 עם
status=ignored. המטרה היא לוודא שה-endpoint חי ולא קורס.
"""

from __future__ import annotations

import json
import os
import sys
import time
from pathlib import Path

import httpx

# לאפשר הרצה מכל תיקיה (למשל `python scripts/smoke_webhooks.py`)
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.core.logging import get_logger, setup_logging  # noqa: E402
from app.core.signatures import sign_webhook_payload  # noqa: E402


logger = get_logger(__name__)


def _base_url() -> str:
    port = os.environ.get("PORT", "8000")
    return os.environ.get("BASE_URL", f"http://127.0.0.1:{port}").rstrip("/")


def _timeout_seconds() -> float:
    return float(os.environ.get("SMOKE_TIMEOUT_SECONDS", "10"))


def _webhook_secret() -> str:
    return os.environ.get("SMOKE_WEBHOOK_SECRET", "smoke-secret")


def _razorpay_payload() -> dict:
    now = int(time.time())
    return {
        "id": f"evt_smoke_{now}",
        "event": "payment.captured",
        "created_at": now,
        "payload": {
            "payment": {
                "entity": {
                    "id": f"pay_smoke_{now}",
                    "order_id": "order_smoke_missing",
                    "status": "captured",
                }
            }
        },
    }


def _check_status(resp: httpx.Response, expected_family: int = 2) -> None:
    family = resp.status_code // 100
    if family != expected_family:
        raise RuntimeError(
            f"Unexpected status {resp.status_code} for {resp.request.method} {resp.request.url}. "
            f"Body: {(resp.text or '')[:500]}"
        )


def main() -> None:
    setup_logging(level="INFO", json_format=False, app_name="chatpay-orders-smoke")

    base_url = _base_url()
    timeout = _timeout_seconds()

    logger.info("Starting smoke tests", extra_data={"base_url": base_url, "timeout_seconds": timeout})

    with httpx.Client(timeout=timeout) as client:
        health_url = f"{base_url}/health"
        logger.info("Checking health endpoint", extra_data={"url": health_url})
        resp = client.get(health_url)
        _check_status(resp, expected_family=2)

        webhook_url = f"{base_url}/api/webhooks/razorpay"
        raw_body = json.dumps(_razorpay_payload()).encode("utf-8")
        signature = sign_webhook_payload(raw_body, _webhook_secret())
        logger.info("Posting signed razorpay webhook", extra_data={"url": webhook_url})
        resp = client.post(
            webhook_url,
            content=raw_body,
            headers={"Content-Type": "application/json", "X-Razorpay-Signature": signature},
        )
        _check_status(resp, expected_family=2)
        logger.info("Webhook answered", extra_data={"body": resp.json()})

    logger.info("Smoke tests completed successfully")


if __name__ == "__main__":
    main()
