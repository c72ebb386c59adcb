from django.contrib.auth.models import User
from django.core.validators import MinValueValidator
from django.db import models

MONEY_FIELD_OPTIONS = {
    'max_digits': 14,
    'decimal_places': 2,
    'default': 0,
    'validators': [MinValueValidator(0)],
}


class UserProfile(models.Model):
    ROLE_USER = 'USER'
    ROLE_OWNER = 'OWNER'
    ROLE_CHOICES = (
        (ROLE_USER, 'User'),
        (ROLE_OWNER, 'Owner'),
    )

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='profile')
    phone_number = models.CharField(max_length=20, null=True, blank=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_USER)

    def __str__(self):
        return f"Profile - {self.user.username}"


class FinancialData(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='financial_data')
    monthly_income = models.DecimalField(**MONEY_FIELD_OPTIONS)
    monthly_expenses = models.DecimalField(**MONEY_FIELD_OPTIONS)
    credit_card_debt = models.DecimalField(**MONEY_FIELD_OPTIONS)
    loan_debt = models.DecimalField(**MONEY_FIELD_OPTIONS)
    overdraft_debt = models.DecimalField(**MONEY_FIELD_OPTIONS)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user.username} Financial Data"

    @property
    def total_debts(self):
        return self.credit_card_debt + self.loan_debt + self.overdraft_debt


class Transaction(models.Model):
    TYPE_INCOME = 'INCOME'
    TYPE_EXPENSE = 'EXPENSE'
    TYPE_CHOICES = (
        (TYPE_INCOME, 'Receita'),
        (TYPE_EXPENSE, 'Despesa'),
    )

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='transactions')
    date = models.DateTimeField()
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    description = models.CharField(max_length=255, blank=True, default='')
    amount = models.DecimalField(**MONEY_FIELD_OPTIONS)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-date', '-id']

    def __str__(self):
        return f"{self.get_type_display()} {self.amount} - {self.user.username}"


class ChallengeProgress(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='challenge_progress')
    challenge_key = models.CharField(max_length=80)
    current_day = models.PositiveIntegerField(default=0)
    completed = models.BooleanField(default=False)
    started_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['challenge_key', 'id']

    def __str__(self):
        return f"{self.challenge_key} - {self.user.username}"


class AuditLog(models.Model):
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='actor_logs')
    target_user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='target_logs',
    )
    action = models.CharField(max_length=120)
    details = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        actor_name = self.actor.username if self.actor else 'Unknown'
        return f'{actor_name} - {self.action}'
