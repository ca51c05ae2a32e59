"""Notification service for sending billing events as Telegram messages."""

import logging

from telegram.ext import Application

from src.schemas.billing import Account
from src.services import collections
from src.services.events import (
    BillCreated,
    BillingEvent,
    DisconnectionCleared,
    DisconnectionRisk,
    EventSink,
    OverpaymentRecorded,
    PaymentRejected,
    PaymentVerified,
)
from src.services.store import StoreReader

logger = logging.getLogger(__name__)


def render_message(event: BillingEvent) -> str | None:
    """Customer-facing text of an event, None for events customers never see."""
    if isinstance(event, BillCreated):
        text = (
            f"A new bill for the billing period {event.billing_period} with due date "
            f"{event.due_date:%d/%m/%Y} has been created for your account.\n"
            f"Bill No. {event.bill_number}, amount due: <b>₱{event.total_due:.2f}</b>"
        )
        if event.overpayment_applied > 0:
            text += (
                f"\nAn overpayment of ₱{event.overpayment_applied:.2f} was applied to this bill."
            )
        return text
    if isinstance(event, DisconnectionRisk):
        return (
            "Your account is at risk of disconnection due to unpaid bills "
            f"({event.unpaid_bills} unpaid)."
        )
    if isinstance(event, PaymentVerified):
        return (
            f"Thank you for your payment of <b>₱{event.amount:.2f}</b> for your water bill.\n"
            f"Reference No.: {event.reference_number}\n"
            f"Remaining Balance: ₱{event.remaining_ledger_balance:.2f}"
        )
    if isinstance(event, OverpaymentRecorded):
        return (
            f"An overpayment of ₱{event.amount:.2f} has been recorded for your account. "
            "The amount will be applied to future bills."
        )
    if isinstance(event, PaymentRejected):
        text = f"Your payment verification ({event.reference_number}) has been rejected."
        if event.reason:
            text += f"\nReason: {event.reason}"
        return text
    if isinstance(event, DisconnectionCleared):
        return "Your account is no longer at risk of disconnection. Thank you!"
    return None


class NotificationService(EventSink):
    """Deliver billing events to account holders through the Telegram bot."""

    def __init__(self, app: Application, accounts: StoreReader):
        self.app = app
        self.bot = app.bot
        self.accounts = accounts

    async def send_message(
        self, chat_id: int, text: str, reply_markup=None, parse_mode="HTML"
    ) -> None:
        """Send message to a Telegram chat.

        Args:
            chat_id: Telegram chat ID
            text: Message text
            reply_markup: Optional telegram reply_markup (InlineKeyboardMarkup etc.)
            parse_mode: Message parse mode (HTML or Markdown). Default: HTML.
        """
        try:
            await self.bot.send_message(
                chat_id=int(chat_id), text=text, reply_markup=reply_markup, parse_mode=parse_mode
            )
        except Exception as e:
            logger.error("Error sending message to %s: %s", chat_id, e)
            raise

    async def publish(self, event: BillingEvent) -> None:
        text = render_message(event)
        if text is None:
            return

        document = await self.accounts.get(collections.ACCOUNTS, event.account_id)
        if document is None:
            logger.warning("Cannot notify unknown account %s", event.account_id)
            return
        account = Account.from_document(document.data)
        if account.notify_chat_id is None:
            logger.debug("Account %s has no notification chat", account.account_id)
            return

        await self.send_message(account.notify_chat_id, text)


__all__ = ["NotificationService", "render_message"]
