import logging
from calendar import monthrange
from datetime import timedelta

from django.contrib.auth.models import User
from django.db.models import Prefetch, Q
from django.utils import timezone

from .models import Transaction, UserProfile
from .records import RECENT_TRANSACTION_LIMIT, UserRecord

logger = logging.getLogger(__name__)

PERIOD_ALL = 'all'
PERIOD_TODAY = 'today'
PERIOD_WEEK = 'week'
PERIOD_MONTH = 'month'
PERIOD_CHOICES = (
    (PERIOD_ALL, 'Todos os períodos'),
    (PERIOD_TODAY, 'Hoje'),
    (PERIOD_WEEK, 'Última semana'),
    (PERIOD_MONTH, 'Último mês'),
)
PERIODS = {value for value, _ in PERIOD_CHOICES}

SUMMARY_CHART_COLORS = ['rgba(34, 197, 94, 0.8)', 'rgba(239, 68, 68, 0.8)', 'rgba(59, 130, 246, 0.8)']
DEBT_CHART_COLORS = ['rgba(239, 68, 68, 0.8)', 'rgba(245, 158, 11, 0.8)', 'rgba(168, 85, 247, 0.8)']


def directory_queryset():
    """Users with the USER role (or no profile yet), newest registrations first."""
    recent_transactions = Transaction.objects.order_by('-date', '-id')[:RECENT_TRANSACTION_LIMIT]
    return (
        User.objects.filter(Q(profile__role=UserProfile.ROLE_USER) | Q(profile__isnull=True))
        .select_related('profile', 'financial_data')
        .prefetch_related(
            Prefetch('transactions', queryset=recent_transactions, to_attr='recent_transactions'),
            'challenge_progress',
        )
        .order_by('-date_joined', '-id')
    )


def fetch_user_directory():
    """Load every user record. Database errors propagate to the caller."""
    records = [UserRecord.from_user(user) for user in directory_queryset()]
    logger.debug('Loaded %d user records', len(records))
    return records


def fetch_user_record(user_id):
    user = directory_queryset().filter(id=user_id).first()
    if user is None:
        return None
    return UserRecord.from_user(user)


def _shift_back_one_month(moment):
    year = moment.year
    month = moment.month - 1
    if month == 0:
        month = 12
        year -= 1
    day = min(moment.day, monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_start(period, now=None):
    """Earliest registration instant accepted by ``period``; None for 'all'."""
    if period not in PERIODS:
        raise ValueError(f'Unknown period: {period!r}')
    if period == PERIOD_ALL:
        return None

    now = now or timezone.now()
    if timezone.is_naive(now):
        now = timezone.make_aware(now)
    now = timezone.localtime(now)

    if period == PERIOD_TODAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == PERIOD_WEEK:
        return now - timedelta(days=7)
    return _shift_back_one_month(now)


def _matches_query(record, needle):
    for value in (record.name, record.email, record.phone):
        if value and needle in value.lower():
            return True
    return False


def filter_users(records, query='', period=PERIOD_ALL, now=None):
    """Records matching both the text query and the registration period, order kept."""
    needle = (query or '').lower()
    start = period_start(period, now=now)

    filtered = []
    for record in records:
        if needle and not _matches_query(record, needle):
            continue
        if start is not None and not _registered_since(record, start):
            continue
        filtered.append(record)
    return filtered


def _registered_since(record, start):
    created_at = record.created_at
    if created_at is None:
        return False
    if timezone.is_naive(created_at):
        created_at = timezone.make_aware(created_at)
    return created_at >= start


def overall_stats(records):
    with_data = [record.financial_data for record in records if record.financial_data is not None]
    users_with_data = len(with_data)
    total_income = sum(snapshot.monthly_income for snapshot in with_data)
    total_debts = sum(snapshot.total_debts for snapshot in with_data)
    return {
        'total_users': len(records),
        'users_with_data': users_with_data,
        'avg_income': total_income / users_with_data if users_with_data else 0,
        'total_debts': total_debts,
    }


def user_chart_data(record):
    snapshot = record.financial_data
    if snapshot is None:
        return None

    return {
        'summary': {
            'labels': ['Renda', 'Gastos', 'Total Livre'],
            'values': [
                snapshot.monthly_income,
                snapshot.monthly_expenses,
                max(0, snapshot.free_total),
            ],
            'colors': list(SUMMARY_CHART_COLORS),
        },
        'debts': {
            'labels': ['Cartão de Crédito', 'Empréstimos', 'Cheque Especial'],
            'values': [
                snapshot.credit_card_debt,
                snapshot.loan_debt,
                snapshot.overdraft_debt,
            ],
            'colors': list(DEBT_CHART_COLORS),
        },
    }
