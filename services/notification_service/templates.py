"""Plain-text renderings of the transactional e-mails."""
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from services.order_service.enums import NotificationKind
from services.order_service.pricing import breakdown_from_order


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str


def format_euro(cents) -> str:
    value = (cents or 0) / 100
    return f"{value:,.2f} €".replace(",", " ").replace(".", ",")


def format_date(value) -> str:
    return value.strftime("%d/%m/%Y") if value is not None else "-"


def _greeting(customer) -> str:
    first_name = (getattr(customer, "first_name", "") or "").strip()
    return f"{first_name}, " if first_name else ""


def _suffix(order) -> str:
    return f" (commande #{order.number})" if order.number else ""


def _pending_lines(order):
    return [line for line in order.consigne_lines if line.received_at is None and line.due_at is not None]


def _order_url(order, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/account/orders/{order.id}" if base_url else ""


def render_order_confirmation(order, customer, base_url: str) -> Optional[RenderedEmail]:
    totals = breakdown_from_order(order)
    rows = [f"- {item.name} x{item.quantity}: {format_euro(item.line_total_cents)}" for item in order.items]
    summary = [f"Sous-total : {format_euro(totals.items_subtotal_cents)}"]
    if totals.client_discount_cents:
        summary.append(
            f"Remise client ({totals.client_discount_percent}%) : -{format_euro(totals.client_discount_cents)}"
        )
    if totals.promo_discount_cents:
        summary.append(f"Code promo {totals.promo_code} : -{format_euro(totals.promo_discount_cents)}")
    summary.append(f"Livraison : {format_euro(totals.shipping_cost_cents)}")
    summary.append(f"Total : {format_euro(totals.total_cents)}")

    text = "\n".join(
        [f"{_greeting(customer)}merci pour ta commande{_suffix(order)}.", ""]
        + rows
        + [""]
        + summary
        + (["", f"Suivre ma commande : {_order_url(order, base_url)}"] if base_url else [])
    )
    return RenderedEmail(subject=f"Confirmation de commande{_suffix(order)}", text=text)


def render_consigne_start(order, customer, base_url: str) -> Optional[RenderedEmail]:
    lines = _pending_lines(order)
    if not lines:
        return None
    rows = [
        f"- {line.name} x{line.quantity} : {format_euro(line.amount_cents * line.quantity)}, "
        f"retour avant le {format_date(line.due_at)}"
        for line in lines
    ]
    text = "\n".join(
        [f"{_greeting(customer)}ta commande est livrée. Le délai de retour de consigne commence.", ""]
        + rows
    )
    return RenderedEmail(subject=f"Consigne : retour de l'ancienne pièce{_suffix(order)}", text=text)


def render_consigne_received(order, customer, base_url: str) -> Optional[RenderedEmail]:
    text = f"{_greeting(customer)}nous avons bien reçu ton ancienne pièce{_suffix(order)}. Merci !"
    return RenderedEmail(subject=f"Consigne reçue{_suffix(order)}", text=text)


def render_consigne_reminder_soon(order, customer, base_url: str) -> Optional[RenderedEmail]:
    lines = _pending_lines(order)
    if not lines:
        return None
    rows = [f"- {line.name} x{line.quantity}, date limite : {format_date(line.due_at)}" for line in lines]
    text = "\n".join(
        [f"{_greeting(customer)}rappel consigne : pense à retourner ton ancienne pièce avant la date limite.", ""]
        + rows
    )
    return RenderedEmail(subject=f"Rappel consigne : retour à prévoir{_suffix(order)}", text=text)


def render_consigne_overdue(order, customer, base_url: str) -> Optional[RenderedEmail]:
    lines = _pending_lines(order)
    if not lines:
        return None
    total_due = sum((line.amount_cents or 0) * (line.quantity or 0) for line in lines)
    rows = [f"- {line.name} x{line.quantity}, date limite dépassée : {format_date(line.due_at)}" for line in lines]
    text = "\n".join(
        [
            f"{_greeting(customer)}nous n'avons pas encore reçu l'ancienne pièce{_suffix(order)}.",
            f"Montant total de consigne concerné : {format_euro(total_due)}.",
            "",
        ]
        + rows
    )
    return RenderedEmail(subject=f"Consigne en retard : action requise{_suffix(order)}", text=text)


RENDERERS: Dict[NotificationKind, Callable] = {
    NotificationKind.ORDER_CONFIRMATION: render_order_confirmation,
    NotificationKind.CONSIGNE_START: render_consigne_start,
    NotificationKind.CONSIGNE_RECEIVED: render_consigne_received,
    NotificationKind.CONSIGNE_REMINDER_SOON: render_consigne_reminder_soon,
    NotificationKind.CONSIGNE_OVERDUE: render_consigne_overdue,
}


def render(kind: NotificationKind, order, customer, base_url: str = "") -> Optional[RenderedEmail]:
    return RENDERERS[kind](order, customer, base_url)
