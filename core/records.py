"""In-memory user records consumed by the directory, the detail view and the reports.

Records are built either from ORM instances (``UserRecord.from_user``) or from the
JSON payload served by ``/api/admin/users`` (``UserRecord.from_dict``), and
serialize back to that payload with ``to_dict``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.utils.dateparse import parse_datetime

TYPE_INCOME = 'INCOME'
TYPE_EXPENSE = 'EXPENSE'
TYPE_LABELS = {
    TYPE_INCOME: 'Receita',
    TYPE_EXPENSE: 'Despesa',
}

# The API returns at most this many transactions per user, most recent first.
RECENT_TRANSACTION_LIMIT = 10


def _to_amount(value) -> float:
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        return float(value.quantize(Decimal('0.01')))
    return float(value)


def _to_datetime(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    parsed = parse_datetime(str(value))
    if parsed is None:
        raise ValueError(f'Invalid datetime value: {value!r}')
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _blank_to_none(value) -> Optional[str]:
    text = (value or '').strip()
    return text or None


@dataclass(frozen=True)
class FinancialSnapshot:
    monthly_income: float = 0.0
    monthly_expenses: float = 0.0
    credit_card_debt: float = 0.0
    loan_debt: float = 0.0
    overdraft_debt: float = 0.0

    @property
    def free_total(self) -> float:
        """Income minus expenses; may be negative."""
        return self.monthly_income - self.monthly_expenses

    @property
    def total_debts(self) -> float:
        return self.credit_card_debt + self.loan_debt + self.overdraft_debt

    @classmethod
    def from_model(cls, financial_data) -> 'FinancialSnapshot':
        return cls(
            monthly_income=_to_amount(financial_data.monthly_income),
            monthly_expenses=_to_amount(financial_data.monthly_expenses),
            credit_card_debt=_to_amount(financial_data.credit_card_debt),
            loan_debt=_to_amount(financial_data.loan_debt),
            overdraft_debt=_to_amount(financial_data.overdraft_debt),
        )

    @classmethod
    def from_dict(cls, payload: dict) -> 'FinancialSnapshot':
        return cls(
            monthly_income=_to_amount(payload.get('monthlyIncome')),
            monthly_expenses=_to_amount(payload.get('monthlyExpenses')),
            credit_card_debt=_to_amount(payload.get('creditCardDebt')),
            loan_debt=_to_amount(payload.get('loanDebt')),
            overdraft_debt=_to_amount(payload.get('overdraftDebt')),
        )

    def to_dict(self) -> dict:
        return {
            'monthlyIncome': self.monthly_income,
            'monthlyExpenses': self.monthly_expenses,
            'creditCardDebt': self.credit_card_debt,
            'loanDebt': self.loan_debt,
            'overdraftDebt': self.overdraft_debt,
        }


@dataclass(frozen=True)
class TransactionRecord:
    date: datetime
    type: str               # 'INCOME' | 'EXPENSE'
    description: str
    amount: float           # magnitude; sign comes from type

    @property
    def is_income(self) -> bool:
        return self.type == TYPE_INCOME

    @property
    def type_label(self) -> str:
        return TYPE_LABELS.get(self.type, self.type)

    @property
    def sign(self) -> str:
        return '+' if self.is_income else '-'

    @classmethod
    def from_model(cls, transaction) -> 'TransactionRecord':
        return cls(
            date=transaction.date,
            type=transaction.type,
            description=transaction.description or '',
            amount=abs(_to_amount(transaction.amount)),
        )

    @classmethod
    def from_dict(cls, payload: dict) -> 'TransactionRecord':
        return cls(
            date=_to_datetime(payload.get('date')),
            type=payload.get('type') or TYPE_EXPENSE,
            description=payload.get('description') or '',
            amount=abs(_to_amount(payload.get('amount'))),
        )

    def to_dict(self) -> dict:
        return {
            'date': _iso(self.date),
            'type': self.type,
            'description': self.description,
            'amount': self.amount,
        }


@dataclass(frozen=True)
class UserRecord:
    id: int
    created_at: datetime
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = 'USER'
    last_access_at: Optional[datetime] = None
    financial_data: Optional[FinancialSnapshot] = None
    transactions: tuple = field(default_factory=tuple)
    challenge_progress: tuple = field(default_factory=tuple)

    @property
    def has_financial_data(self) -> bool:
        return self.financial_data is not None

    @property
    def status_label(self) -> str:
        return 'Completo' if self.has_financial_data else 'Pendente'

    @classmethod
    def from_user(cls, user) -> 'UserRecord':
        profile = getattr(user, 'profile', None)
        financial_data = getattr(user, 'financial_data', None)
        transactions = getattr(user, 'recent_transactions', None)
        if transactions is None:
            transactions = user.transactions.order_by('-date', '-id')[:RECENT_TRANSACTION_LIMIT]
        challenges = [
            {
                'challengeKey': progress.challenge_key,
                'currentDay': progress.current_day,
                'completed': progress.completed,
                'startedAt': _iso(progress.started_at),
                'updatedAt': _iso(progress.updated_at),
            }
            for progress in user.challenge_progress.all()
        ]
        return cls(
            id=user.id,
            name=_blank_to_none(user.get_full_name()),
            email=_blank_to_none(user.email),
            phone=_blank_to_none(profile.phone_number) if profile else None,
            role=profile.role if profile else 'USER',
            created_at=user.date_joined,
            last_access_at=user.last_login,
            financial_data=FinancialSnapshot.from_model(financial_data) if financial_data else None,
            transactions=tuple(TransactionRecord.from_model(item) for item in transactions),
            challenge_progress=tuple(challenges),
        )

    @classmethod
    def from_dict(cls, payload: dict) -> 'UserRecord':
        financial_payload = payload.get('financialData')
        return cls(
            id=payload.get('id'),
            name=payload.get('name') or None,
            email=payload.get('email') or None,
            phone=payload.get('phone') or None,
            role=payload.get('role') or 'USER',
            created_at=_to_datetime(payload.get('createdAt')),
            last_access_at=_to_datetime(payload.get('lastAccessAt')),
            financial_data=FinancialSnapshot.from_dict(financial_payload) if financial_payload else None,
            transactions=tuple(
                TransactionRecord.from_dict(item) for item in payload.get('transactions') or []
            ),
            challenge_progress=tuple(payload.get('challengeProgress') or []),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'role': self.role,
            'createdAt': _iso(self.created_at),
            'lastAccessAt': _iso(self.last_access_at),
            'financialData': self.financial_data.to_dict() if self.financial_data else None,
            'transactions': [item.to_dict() for item in self.transactions],
            'challengeProgress': list(self.challenge_progress),
        }
