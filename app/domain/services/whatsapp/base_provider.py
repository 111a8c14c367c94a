"""
ממשק בסיסי לספק WhatsApp — Dependency Inversion.

שכבת הלוגיקה העסקית (dispatcher, order service) תלויה רק בממשק,
ובבדיקות מוחלף במימוש fake.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class BaseWhatsAppProvider(ABC):
    """
    ממשק אחיד לשליחת הודעות WhatsApp ללקוח של tenant.

    כל מימוש אחראי על:
    - שליחת HTTP
    - retry + circuit breaker
    """

    @abstractmethod
    async def send_text(self, to: str, text: str) -> None:
        """
        שליחת הודעת טקסט.

        Args:
            to: מספר WhatsApp בינלאומי, ספרות בלבד.
            text: טקסט ההודעה.

        Raises:
            WhatsAppError: בכשלון שליחה.
        """

    @abstractmethod
    async def send_payment_request(
        self,
        to: str,
        *,
        amount_paise: int,
        currency: str,
        description: str,
        reference_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        שליחת בקשת תשלום אינטראקטיבית בתוך הצ'אט.

        Args:
            to: מספר WhatsApp של הלקוח.
            amount_paise: סכום ביחידות הקטנות של המטבע.
            currency: קוד מטבע (INR).
            description: תיאור שמוצג ללקוח.
            reference_id: מזהה ייחודי של בקשת התשלום.
            metadata: נתונים שחוזרים אלינו (gateway order id, order id).

        Raises:
            WhatsAppError: בכשלון שליחה.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """שם הספק לשימוש בלוגים ודיאגנוסטיקה."""
