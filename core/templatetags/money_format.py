from django import template

from core.formatting import format_brl, format_date_br, format_signed_brl

register = template.Library()


@register.filter
def brl(value):
    return format_brl(float(value or 0))


@register.filter
def date_br(value):
    return format_date_br(value)


@register.filter
def signed_brl(transaction):
    return format_signed_brl(transaction.amount, transaction.is_income)
