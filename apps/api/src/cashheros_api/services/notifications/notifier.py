"""Account-level transactional emails."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from loguru import logger

from cashheros_api.core.settings import get_settings
from cashheros_api.models.cashback import CashbackTransaction, WithdrawalRequest, WithdrawalStatus
from cashheros_api.models.user import User

from .backend import EmailBackend, SMTPEmailBackend


@dataclass
class NotificationEvent:
    """Record of a message handed to the backend."""

    recipient: str
    subject: str
    event_type: str


class AccountNotifier:
    """Composes verification and cashback emails and hands them to a backend."""

    def __init__(self, backend: Optional[EmailBackend] = None) -> None:
        self._backend = backend if backend is not None else self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    async def send_verification_email(self, user: User, token: str) -> None:
        link = f"{get_settings().frontend_url.rstrip('/')}/verify-email/{token}"
        body = "\n".join(
            [
                f"Hi {user.display_name or 'there'},",
                "",
                "Confirm your email address to start collecting cashback:",
                link,
            ]
        )
        await self._deliver(user.email, "Verify your email address", body, "verification")

    async def send_cashback_confirmed(self, user: User, transaction: CashbackTransaction) -> None:
        body = "\n".join(
            [
                f"Hi {user.display_name or 'there'},",
                "",
                f"{_money(transaction.cashback_amount)} of cashback is now available to withdraw.",
            ]
        )
        await self._deliver(user.email, "Your cashback is confirmed", body, "cashback_confirmed")

    async def send_withdrawal_settled(self, user: User, withdrawal: WithdrawalRequest) -> None:
        if withdrawal.status == WithdrawalStatus.PAID:
            subject = "Your withdrawal has been paid"
            line = f"We sent {_money(withdrawal.amount)} to your {withdrawal.method.value.replace('_', ' ')} account."
        else:
            subject = "Your withdrawal could not be completed"
            line = (
                f"The payout of {_money(withdrawal.amount)} failed and the amount is back in your available balance."
            )
        body = "\n".join([f"Hi {user.display_name or 'there'},", "", line])
        await self._deliver(user.email, subject, body, f"withdrawal_{withdrawal.status.value}")

    async def _deliver(self, recipient: str, subject: str, body: str, event_type: str) -> None:
        if self._backend is None:
            logger.info("Email backend not configured; skipping send", event_type=event_type)
            return
        try:
            await self._backend.send_email(recipient, subject, body)
        except Exception as exc:
            # Delivery is best effort and never rolls back the ledger or auth flow.
            logger.exception("Email delivery failed", event_type=event_type, error=str(exc))
            return
        self._events.append(NotificationEvent(recipient=recipient, subject=subject, event_type=event_type))
        logger.info("Email sent", event_type=event_type)

    def _build_default_backend(self) -> Optional[EmailBackend]:
        config = get_settings()
        if not config.smtp_host or not config.smtp_sender_email:
            return None
        return SMTPEmailBackend(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            use_tls=config.smtp_use_tls,
            sender_email=config.smtp_sender_email,
        )


def _money(value: Decimal | float | None) -> str:
    return f"{Decimal(value or 0):.2f}"
