from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..constants import (
    PAYMENT_GRACE_DAYS,
    REMINDER_LEVEL_AMIABLE,
    REMINDER_LEVEL_FORMELLE,
    REMINDER_LEVEL_MISE_EN_DEMEURE,
)
from ..core.errors import ValidationError
from .audit import audit_log
from .email import SendResult, send_notification
from .records import LateInvoice, as_decimal

logger = logging.getLogger(__name__)

STATUTE_REFERENCE = "article 24 de la loi n°89-462 du 6 juillet 1989"

MONTH_NAMES = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]


@dataclass(frozen=True)
class ReminderContent:
    subject: str
    body: str


@dataclass(frozen=True)
class ReminderDispatch:
    invoice_id: int
    reminder_level: str
    recipient_email: Optional[str]
    status: str  # sent|skipped|failed
    error: Optional[str] = None


def format_amount(amount: Decimal) -> str:
    """French money display: ``1 234,50 €``."""
    value = as_decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    grouped = f"{value:,.2f}".replace(",", " ").replace(".", ",")
    return f"{grouped} €"


def format_due_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def format_period(period: Optional[str]) -> Optional[str]:
    """``2025-01`` becomes ``janvier 2025``; anything else is returned as-is."""
    if not period:
        return None
    year, _, month = period.partition("-")
    if month.isdigit() and 1 <= int(month) <= 12:
        return f"{MONTH_NAMES[int(month) - 1]} {year}"
    return period


def _require(invoice: LateInvoice) -> None:
    missing = [
        name
        for name in ("tenant_name", "property_address", "amount", "due_date", "days_late")
        if getattr(invoice, name, None) in (None, "")
    ]
    if missing:
        raise ValidationError(
            f"Late invoice {getattr(invoice, 'invoice_id', '?')} is missing {', '.join(missing)}.",
            context={"missing": missing},
        )


def _period_clause(invoice: LateInvoice) -> str:
    period = format_period(invoice.period)
    return f" correspondant à la période de {period}" if period else ""


def _render_amiable(invoice: LateInvoice) -> ReminderContent:
    subject = f"Rappel : loyer en attente – {invoice.property_address}"
    body = "\n".join(
        [
            f"Bonjour {invoice.tenant_name},",
            "",
            "Sauf erreur de notre part, nous n'avons pas encore reçu le règlement "
            f"de votre loyer{_period_clause(invoice)}.",
            "",
            f"Montant dû : {format_amount(invoice.amount)}",
            f"Échéance : {format_due_date(invoice.due_date)}",
            "",
            "Merci de bien vouloir régulariser votre situation dans les meilleurs délais.",
            "Si vous avez déjà effectué le paiement, veuillez ignorer ce message.",
            "",
            "Cordialement,",
            "Votre gestionnaire",
        ]
    )
    return ReminderContent(subject=subject, body=body)


def _render_formelle(invoice: LateInvoice) -> ReminderContent:
    subject = f"Relance : loyer impayé – {invoice.property_address}"
    body = "\n".join(
        [
            f"Bonjour {invoice.tenant_name},",
            "",
            "Malgré notre précédent rappel, le règlement de votre loyer"
            f"{_period_clause(invoice)} n'a toujours pas été reçu.",
            "",
            f"Montant dû : {format_amount(invoice.amount)}",
            f"Échéance : {format_due_date(invoice.due_date)}",
            f"Retard : {invoice.days_late} jours",
            "",
            f"Nous vous demandons de régulariser cette situation dans un délai de {PAYMENT_GRACE_DAYS} jours "
            "à compter de la réception de ce courrier.",
            "En cas de difficultés de paiement, n'hésitez pas à nous contacter afin de convenir d'un échéancier.",
            "",
            "Cordialement,",
            "Votre gestionnaire",
        ]
    )
    return ReminderContent(subject=subject, body=body)


def _render_mise_en_demeure(invoice: LateInvoice) -> ReminderContent:
    subject = f"MISE EN DEMEURE – Loyer impayé – {invoice.property_address}"
    body = "\n".join(
        [
            f"Madame, Monsieur {invoice.tenant_name},",
            "",
            f"Par la présente, nous vous mettons en demeure de régler sous {PAYMENT_GRACE_DAYS} jours la somme de "
            f"{format_amount(invoice.amount)}{_period_clause(invoice)}, échue le "
            f"{format_due_date(invoice.due_date)}, soit un retard de {invoice.days_late} jours.",
            "",
            f"Conformément à l'{STATUTE_REFERENCE}, à défaut de paiement dans ce délai, nous nous verrons "
            "contraints de mettre en œuvre la clause résolutoire prévue au bail et d'engager une procédure "
            "de recouvrement.",
            "",
            "La présente mise en demeure fait courir les intérêts de retard au taux légal.",
            "",
            "Veuillez agréer, Madame, Monsieur, l'expression de nos salutations distinguées.",
            "Votre gestionnaire",
        ]
    )
    return ReminderContent(subject=subject, body=body)


_RENDERERS: Dict[str, Callable[[LateInvoice], ReminderContent]] = {
    REMINDER_LEVEL_AMIABLE: _render_amiable,
    REMINDER_LEVEL_FORMELLE: _render_formelle,
    REMINDER_LEVEL_MISE_EN_DEMEURE: _render_mise_en_demeure,
}


def render_reminder(level: str, invoice: LateInvoice) -> ReminderContent:
    renderer = _RENDERERS.get(level)
    if renderer is None:
        raise ValidationError(f"Unknown reminder level {level!r}.")
    _require(invoice)
    return renderer(invoice)


def dispatch_reminders(
    late_invoices: Iterable[LateInvoice],
    *,
    sender: Callable[[str, str, str], SendResult] = send_notification,
    db_session: Optional[Session] = None,
    actor_user_id: Optional[int] = None,
) -> List[ReminderDispatch]:
    """Render each late invoice and hand it to the notification dispatcher."""
    outcomes: List[ReminderDispatch] = []
    for invoice in late_invoices:
        if not invoice.tenant_email:
            outcomes.append(
                ReminderDispatch(
                    invoice_id=invoice.invoice_id,
                    reminder_level=invoice.reminder_level,
                    recipient_email=None,
                    status="skipped",
                    error="No tenant email on file.",
                )
            )
            continue
        try:
            content = render_reminder(invoice.reminder_level, invoice)
        except ValidationError as exc:
            logger.warning("Skipping reminder for invoice %s: %s", invoice.invoice_id, exc.detail)
            outcomes.append(
                ReminderDispatch(
                    invoice_id=invoice.invoice_id,
                    reminder_level=invoice.reminder_level,
                    recipient_email=invoice.tenant_email,
                    status="failed",
                    error=exc.detail,
                )
            )
            continue
        result = sender(content.subject, content.body, invoice.tenant_email)
        outcomes.append(
            ReminderDispatch(
                invoice_id=invoice.invoice_id,
                reminder_level=invoice.reminder_level,
                recipient_email=invoice.tenant_email,
                status="failed" if result.error else "sent",
                error=result.error,
            )
        )

    if db_session is not None:
        audit_log(
            db_session=db_session,
            actor_user_id=actor_user_id,
            action="delinquency.reminders.dispatch",
            target_entity_type="Invoice",
            after={
                "sent": [item.invoice_id for item in outcomes if item.status == "sent"],
                "skipped": [item.invoice_id for item in outcomes if item.status == "skipped"],
                "failed": [item.invoice_id for item in outcomes if item.status == "failed"],
            },
        )
    return outcomes
