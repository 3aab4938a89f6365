"""
Formatting helpers for documents (invoice PDFs).
"""
from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from typing import Union


def money(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format an amount with thousands separators and exactly 2 decimals.

    Examples:
        money(1500) -> "1,500.00"
        money(-3.5) -> "-3.50"
        money(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    return f"{num:,.2f}"


def percent(value: Union[int, float, Decimal, str, None]) -> str:
    """Format a rate as a percentage without trailing zeros (7.50 -> "7.5%")."""
    if value is None or value == "":
        return "-"
    try:
        num = Decimal(str(value)).normalize()
    except (InvalidOperation, ValueError, TypeError):
        return "-"
    return f"{num:f}%"


def date_time(value: Union[date, datetime, None], with_time: bool = True) -> str:
    """Format a date or datetime as YYYY-MM-DD[ HH:MM]."""
    if value is None:
        return "-"
    if isinstance(value, datetime) and with_time:
        return value.strftime('%Y-%m-%d %H:%M')
    return value.strftime('%Y-%m-%d')
