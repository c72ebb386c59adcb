from datetime import datetime

from django.utils import timezone

NOT_AVAILABLE = 'N/A'


def format_brl(amount: float) -> str:
    """Format an amount as Brazilian currency, e.g. 'R$ 1.234,56'."""
    grouped = f"{abs(amount):,.2f}".replace(',', '_').replace('.', ',').replace('_', '.')
    sign = '-' if amount < 0 else ''
    return f"{sign}R$ {grouped}"


def format_signed_brl(amount: float, is_income: bool) -> str:
    sign = '+' if is_income else '-'
    return f"{sign}{format_brl(abs(amount))}"


def format_date_br(value) -> str:
    """dd/mm/yyyy in the local time zone; 'N/A' when the value is missing."""
    if value is None:
        return NOT_AVAILABLE
    if isinstance(value, datetime) and timezone.is_aware(value):
        value = timezone.localtime(value)
    return value.strftime('%d/%m/%Y')


def format_plain_amount(amount: float) -> str:
    return f"{amount:.2f}"
