from __future__ import annotations

from django import template
from django.conf import settings

register = template.Library()


@register.filter(name="format_price")
def format_price(amount: object) -> str:
    """
    Whole-unit currency label, e.g. "₱8,500".
    """

    symbol = str(getattr(settings, "CAMPUSNEST_CURRENCY_SYMBOL", "₱"))
    try:
        value = float(str(amount).strip())
    except (TypeError, ValueError):
        return f"{symbol}0"
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.0f}"


@register.filter(name="distance_label")
def distance_label(distance_km: object) -> str:
    try:
        value = float(str(distance_km).strip())
    except (TypeError, ValueError):
        return ""
    if value < 1:
        return f"{int(round(value * 1000))} m away"
    return f"{value:.1f} km away"
