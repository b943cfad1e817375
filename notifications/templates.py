from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from html import escape
from typing import Callable, Dict, Optional, Type
from urllib.parse import urlencode

from pydantic import BaseModel, ValidationError

from models.schemas import (
    EligibilityResultContext,
    FlightRecord,
    FollowupContext,
    NotificationKind,
    RenderedEmail,
    UserRecord,
    VerificationContext,
)
from settings import SETTINGS


CLAIM_URL = "https://www.ryanair.com/ee/en/myryanair/requests/new/eu-261"

# Older kind names still found on queued records.
KIND_ALIASES = {
    "email_verification": NotificationKind.VERIFICATION.value,
    "flight_result": NotificationKind.ELIGIBILITY_RESULT.value,
    "flight_result_eligible": NotificationKind.ELIGIBILITY_RESULT.value,
    "followup_15d": NotificationKind.FOLLOWUP_FIRST.value,
    "followup_donation": NotificationKind.FOLLOWUP_FIRST.value,
    "followup_30d": NotificationKind.FOLLOWUP_FINAL.value,
    "followup_donation_final": NotificationKind.FOLLOWUP_FINAL.value,
}


class TemplateContextError(ValueError):
    pass


@dataclass(frozen=True)
class EmailTemplate:
    kind: NotificationKind
    context_model: Type[BaseModel]
    render: Callable[[BaseModel], RenderedEmail]


def suggested_donation(amount: Decimal | None, rate: float | None = None, fallback: str | None = None) -> Decimal:
    rate = SETTINGS.donation_suggestion_rate if rate is None else rate
    if not amount or amount <= 0:
        return Decimal(fallback or SETTINGS.donation_fallback_amount)
    return (Decimal(amount) * Decimal(str(rate))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _money(currency: str, amount: Decimal) -> str:
    symbol = {"EUR": "€", "GBP": "£"}.get(currency, currency + " ")
    return f"{symbol}{amount:,.0f}" if amount == amount.to_integral_value() else f"{symbol}{amount:,.2f}"


def _page(title: str, body: str, unsubscribe_url: str | None = None) -> str:
    footer = (
        "<p style=\"color: #888; font-size: 12px; text-align: center;\">"
        f"You are receiving this because you track flights with us. <a href=\"{escape(unsubscribe_url)}\">Unsubscribe</a></p>"
        if unsubscribe_url
        else ""
    )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        "<meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family: Arial, sans-serif; background: #f5f7fa; padding: 24px;\">"
        f"<div style=\"max-width: 560px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 32px;\">{body}</div>"
        f"{footer}"
        "</body></html>"
    )


def _donate_link(ctx: FollowupContext) -> str:
    query = urlencode(
        {
            "amount": f"{ctx.suggested_donation:.2f}",
            "currency": ctx.compensation_currency.value,
            "flight": ctx.flight_number,
        }
    )
    return f"{ctx.app_url}/donate?{query}"


def render_verification(ctx: VerificationContext) -> RenderedEmail:
    link = f"{ctx.app_url}/api/v1/verify?{urlencode({'token': ctx.verification_token})}"
    body = (
        "<h1>Verify your email</h1>"
        "<p>Thanks for signing up! Verify your email to get notified when a tracked flight is delayed enough for compensation.</p>"
        f"<p><a href=\"{escape(link)}\">Verify my email</a></p>"
        "<p><strong>What happens next?</strong><br>We monitor your tracked flights and email you the moment a delay "
        "qualifies for EU261/UK261 compensation.</p>"
        "<p style=\"color: #888;\">Didn't sign up? Just ignore this email.</p>"
    )
    return RenderedEmail(subject="Verify your email to track flight delays", html=_page("Verify your email", body))


def render_eligibility_result(ctx: EligibilityResultContext) -> RenderedEmail:
    money = _money(ctx.compensation_currency.value, ctx.compensation_amount)
    flight = escape(ctx.flight_number)
    body = (
        f"<h1>You're owed {money}</h1>"
        f"<p>Flight <strong>{flight}</strong> from {escape(ctx.departure_airport)} to {escape(ctx.arrival_airport)} "
        f"on {ctx.flight_date.isoformat()} qualifies: {escape(ctx.reason)}.</p>"
        "<p>Under <strong>EU261/UK261</strong> the airline is legally required to pay this compensation.</p>"
        f"<p><a href=\"{CLAIM_URL}\">Claim my {money} now</a></p>"
        "<ul><li>Have your booking reference ready</li><li><strong>Never accept vouchers</strong>, insist on cash</li>"
        "<li>Each passenger can claim separately</li></ul>"
    )
    return RenderedEmail(
        subject=f"{ctx.flight_number}: You're owed {money} compensation!",
        html=_page("Compensation owed", body, ctx.unsubscribe_url),
    )


def render_followup_first(ctx: FollowupContext) -> RenderedEmail:
    money = _money(ctx.compensation_currency.value, ctx.compensation_amount)
    body = (
        "<h1>Did you claim?</h1>"
        f"<p>Two weeks ago we let you know that flight <strong>{escape(ctx.flight_number)}</strong> qualified for "
        f"<strong>{money}</strong> in compensation.</p>"
        "<p>If we helped you claim, would you consider paying it forward with a small donation?</p>"
        f"<p><a href=\"{escape(_donate_link(ctx))}\">Donate {_money(ctx.compensation_currency.value, ctx.suggested_donation)}</a></p>"
        f"<p><strong>Haven't claimed yet?</strong> You still have time: <a href=\"{CLAIM_URL}\">start your claim</a>.</p>"
    )
    return RenderedEmail(
        subject=f"Did you claim your {money}? Quick question...",
        html=_page("Compensation follow-up", body, ctx.unsubscribe_url),
    )


def render_followup_final(ctx: FollowupContext) -> RenderedEmail:
    money = _money(ctx.compensation_currency.value, ctx.compensation_amount)
    body = (
        "<h1>One last thing</h1>"
        f"<p>A month ago we found that flight <strong>{escape(ctx.flight_number)}</strong> qualified for "
        f"<strong>{money}</strong> compensation.</p>"
        "<p>This service costs real money to run. If we helped you get compensated, a small donation keeps it free for everyone.</p>"
        f"<p><a href=\"{escape(_donate_link(ctx))}\">Support us</a></p>"
        "<p>This is our final email about this flight.</p>"
    )
    return RenderedEmail(
        subject=f"Final reminder: {ctx.flight_number} compensation follow-up",
        html=_page("Final follow-up", body, ctx.unsubscribe_url),
    )


TEMPLATES: Dict[str, EmailTemplate] = {
    NotificationKind.VERIFICATION.value: EmailTemplate(NotificationKind.VERIFICATION, VerificationContext, render_verification),
    NotificationKind.ELIGIBILITY_RESULT.value: EmailTemplate(
        NotificationKind.ELIGIBILITY_RESULT, EligibilityResultContext, render_eligibility_result
    ),
    NotificationKind.FOLLOWUP_FIRST.value: EmailTemplate(NotificationKind.FOLLOWUP_FIRST, FollowupContext, render_followup_first),
    NotificationKind.FOLLOWUP_FINAL.value: EmailTemplate(NotificationKind.FOLLOWUP_FINAL, FollowupContext, render_followup_final),
}


def resolve_template(kind: str) -> Optional[EmailTemplate]:
    key = KIND_ALIASES.get(kind, kind)
    return TEMPLATES.get(key)


def build_context(
    template: EmailTemplate,
    user: UserRecord,
    flight: FlightRecord | None,
    app_url: str | None = None,
) -> BaseModel:
    """Collect the fields a template needs and validate them before rendering."""
    base_url = (app_url or SETTINGS.app_url).rstrip("/")
    raw: Dict[str, object] = {"email": user.email, "app_url": base_url}
    if template.kind == NotificationKind.VERIFICATION:
        raw["verification_token"] = user.verification_token
    elif flight is not None:
        raw.update(
            {
                "flight_number": flight.flight_number,
                "flight_date": flight.flight_date,
                "departure_airport": flight.departure_airport,
                "arrival_airport": flight.arrival_airport,
                "delay_minutes": flight.delay_minutes,
                "compensation_amount": flight.verdict.amount,
                "compensation_currency": flight.verdict.currency,
                "reason": flight.verdict.reason,
                "unsubscribe_url": f"{base_url}/api/v1/unsubscribe?{urlencode({'email': user.email})}",
            }
        )
        if template.context_model is FollowupContext:
            raw["suggested_donation"] = suggested_donation(flight.verdict.amount)
    try:
        return template.context_model.model_validate(raw)
    except ValidationError as exc:
        missing = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise TemplateContextError(f"{template.kind.value} context invalid: {', '.join(missing)}") from exc


def render(template: EmailTemplate, context: BaseModel) -> RenderedEmail:
    return template.render(context)
