import csv
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
from zoneinfo import ZoneInfo

from django.contrib.auth.models import User
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone

from .directory import (
    fetch_user_directory,
    fetch_user_record,
    filter_users,
    overall_stats,
    period_start,
    user_chart_data,
)
from .models import AuditLog, ChallengeProgress, FinancialData, Transaction, UserProfile
from .records import FinancialSnapshot, TransactionRecord, UserRecord
from .report_utils import (
    ReportError,
    build_user_report_pdf,
    build_users_csv,
    user_report_filename,
    users_csv_filename,
)

FIXED_NOW = datetime(2026, 3, 31, 15, 0, tzinfo=ZoneInfo('America/Sao_Paulo'))


def _record(record_id=1, name=None, email=None, phone=None, created_at=None, **kwargs):
    return UserRecord(
        id=record_id,
        name=name,
        email=email,
        phone=phone,
        created_at=created_at or FIXED_NOW - timedelta(days=30),
        **kwargs,
    )


def _snapshot(income=0, expenses=0, card=0, loan=0, overdraft=0):
    return FinancialSnapshot(
        monthly_income=income,
        monthly_expenses=expenses,
        credit_card_debt=card,
        loan_debt=loan,
        overdraft_debt=overdraft,
    )


def _create_user(username, first_name='', last_name='', phone=None, role=UserProfile.ROLE_USER, joined_days_ago=0):
    user = User.objects.create_user(
        username=username,
        email=f'{username}@example.com',
        password='StrongPass123',
        first_name=first_name,
        last_name=last_name,
    )
    user.date_joined = timezone.now() - timedelta(days=joined_days_ago)
    user.save(update_fields=['date_joined'])
    UserProfile.objects.create(user=user, phone_number=phone, role=role)
    return user


class FilterUsersTests(SimpleTestCase):
    def setUp(self):
        self.ana = _record(1, name=None, email='ana@example.com', phone='11999990000')
        self.bruno = _record(2, name='Bruno Lima', email='bruno@example.com', phone=None)
        self.carla = _record(3, name='Carla Ana Souza', email=None, phone='21988887777')
        self.records = [self.ana, self.bruno, self.carla]

    def test_query_matches_email_when_name_is_missing(self):
        result = filter_users(self.records, query='ana', now=FIXED_NOW)
        self.assertEqual(result, [self.ana, self.carla])

    def test_query_is_case_insensitive_and_checks_phone(self):
        self.assertEqual(filter_users(self.records, query='BRUNO', now=FIXED_NOW), [self.bruno])
        self.assertEqual(filter_users(self.records, query='8888', now=FIXED_NOW), [self.carla])

    def test_missing_fields_never_match_non_empty_query(self):
        self.assertEqual(filter_users(self.records, query='none', now=FIXED_NOW), [])

    def test_empty_query_and_all_period_return_everything(self):
        self.assertEqual(filter_users(self.records, query='', period='all', now=FIXED_NOW), self.records)

    def test_filtering_is_idempotent(self):
        once = filter_users(self.records, query='ana', period='month', now=FIXED_NOW)
        twice = filter_users(once, query='ana', period='month', now=FIXED_NOW)
        self.assertEqual(once, twice)

    def test_today_starts_at_local_midnight(self):
        midnight = timezone.localtime(FIXED_NOW).replace(hour=0, minute=0, second=0, microsecond=0)
        at_midnight = _record(10, name='Hoje', created_at=midnight)
        yesterday = _record(11, name='Ontem', created_at=midnight - timedelta(seconds=1))
        result = filter_users([at_midnight, yesterday], period='today', now=FIXED_NOW)
        self.assertEqual(result, [at_midnight])

    def test_week_covers_last_seven_days(self):
        recent = _record(10, created_at=FIXED_NOW - timedelta(days=6))
        old = _record(11, created_at=FIXED_NOW - timedelta(days=8))
        self.assertEqual(filter_users([recent, old], period='week', now=FIXED_NOW), [recent])

    def test_month_clamps_to_end_of_shorter_month(self):
        start = period_start('month', now=FIXED_NOW)
        self.assertEqual((start.year, start.month, start.day, start.hour), (2026, 2, 28, 15))

        inside = _record(10, created_at=start + timedelta(hours=1))
        outside = _record(11, created_at=start - timedelta(hours=1))
        self.assertEqual(filter_users([inside, outside], period='month', now=FIXED_NOW), [inside])

    def test_query_and_period_are_combined(self):
        new_ana = _record(10, email='ana.nova@example.com', created_at=FIXED_NOW - timedelta(days=2))
        old_ana = _record(11, email='ana.antiga@example.com', created_at=FIXED_NOW - timedelta(days=40))
        new_bruno = _record(12, email='bruno@example.com', created_at=FIXED_NOW - timedelta(days=2))
        result = filter_users([new_ana, old_ana, new_bruno], query='ana', period='week', now=FIXED_NOW)
        self.assertEqual(result, [new_ana])

    def test_unknown_period_is_rejected(self):
        with self.assertRaises(ValueError):
            filter_users(self.records, period='year', now=FIXED_NOW)

    def test_naive_now_is_read_as_local_time(self):
        naive_now = FIXED_NOW.replace(tzinfo=None)
        recent = _record(10, created_at=FIXED_NOW - timedelta(days=2))
        old = _record(11, created_at=FIXED_NOW - timedelta(days=8))
        self.assertEqual(filter_users([recent, old], period='week', now=naive_now), [recent])
        self.assertEqual(period_start('today', now=naive_now), FIXED_NOW.replace(hour=0))


class OverallStatsTests(SimpleTestCase):
    def test_average_income_is_zero_without_financial_data(self):
        stats = overall_stats([_record(1), _record(2)])
        self.assertEqual(stats['total_users'], 2)
        self.assertEqual(stats['users_with_data'], 0)
        self.assertEqual(stats['avg_income'], 0)
        self.assertEqual(stats['total_debts'], 0)

    def test_empty_list(self):
        stats = overall_stats([])
        self.assertEqual(stats['total_users'], 0)
        self.assertEqual(stats['avg_income'], 0)

    def test_average_and_debts_only_count_users_with_data(self):
        records = [
            _record(1, financial_data=_snapshot(income=5000, card=500, loan=1000)),
            _record(2, financial_data=_snapshot(income=3000, overdraft=250)),
            _record(3),
        ]
        stats = overall_stats(records)
        self.assertEqual(stats['total_users'], 3)
        self.assertEqual(stats['users_with_data'], 2)
        self.assertEqual(stats['avg_income'], 4000)
        self.assertEqual(stats['total_debts'], 1750)


class UserChartDataTests(SimpleTestCase):
    def test_chart_values_for_user_with_data(self):
        ana = _record(1, name='Ana', financial_data=_snapshot(income=5000, expenses=3000, card=500))
        payload = user_chart_data(ana)
        self.assertEqual(payload['summary']['values'], [5000, 3000, 2000])
        self.assertEqual(payload['summary']['labels'], ['Renda', 'Gastos', 'Total Livre'])
        self.assertEqual(payload['debts']['values'], [500, 0, 0])
        self.assertEqual(len(payload['debts']['colors']), 3)

    def test_free_total_is_floored_at_zero(self):
        record = _record(1, financial_data=_snapshot(income=1000, expenses=2500))
        self.assertEqual(user_chart_data(record)['summary']['values'][2], 0)

    def test_no_chart_data_without_financial_snapshot(self):
        self.assertIsNone(user_chart_data(_record(1)))


class UserRecordPayloadTests(SimpleTestCase):
    def test_from_dict_accepts_missing_optional_fields(self):
        record = UserRecord.from_dict(
            {
                'id': 7,
                'name': None,
                'email': 'ana@example.com',
                'createdAt': '2026-03-01T10:00:00-03:00',
                'lastAccessAt': None,
                'financialData': None,
                'transactions': [
                    {'date': '2026-03-02T09:00:00-03:00', 'type': 'INCOME', 'description': 'Salário', 'amount': 100},
                ],
            }
        )
        self.assertIsNone(record.name)
        self.assertIsNone(record.last_access_at)
        self.assertFalse(record.has_financial_data)
        self.assertEqual(record.status_label, 'Pendente')
        self.assertEqual(record.transactions[0].type_label, 'Receita')
        self.assertEqual(record.to_dict()['financialData'], None)

    def test_transaction_amount_is_stored_as_magnitude(self):
        transaction = TransactionRecord.from_dict(
            {'date': '2026-03-02T09:00:00Z', 'type': 'EXPENSE', 'description': 'Mercado', 'amount': -80}
        )
        self.assertEqual(transaction.amount, 80)
        self.assertEqual(transaction.sign, '-')
        self.assertEqual(transaction.type_label, 'Despesa')


class UsersCsvTests(SimpleTestCase):
    def setUp(self):
        self.generated_on = FIXED_NOW.date()
        self.records = [
            _record(
                1,
                name='Silva, Ana',
                email='ana@example.com',
                phone='11999990000',
                last_access_at=FIXED_NOW,
                financial_data=_snapshot(income=5000, expenses=3000, card=500, loan=200, overdraft=50),
            ),
            _record(2, name=None, email='bruno@example.com'),
        ]

    def test_row_count_is_title_block_plus_one_per_user(self):
        content = build_users_csv(self.records, generated_on=self.generated_on)
        lines = content.splitlines()
        self.assertEqual(len(lines), 6 + len(self.records))
        self.assertEqual(lines[0], 'MindMoney - Relatório de Usuários')
        self.assertEqual(lines[3], 'Total de Usuários,2')
        self.assertEqual(lines[2], 'Data de Geração,31/03/2026')

    def test_user_rows_quote_commas_and_default_missing_values(self):
        rows = list(csv.reader(build_users_csv(self.records, generated_on=self.generated_on).splitlines()))
        header, first, second = rows[5], rows[6], rows[7]
        self.assertEqual(header[0], 'Nome')
        self.assertEqual(first[0], 'Silva, Ana')
        self.assertEqual(first[5:], ['5000.00', '3000.00', '750.00'])
        self.assertEqual(first[4], '31/03/2026')
        self.assertEqual(second[0], 'N/A')
        self.assertEqual(second[2], 'N/A')
        self.assertEqual(second[4], 'N/A')
        self.assertEqual(second[5:], ['0.00', '0.00', '0.00'])

    def test_empty_list_still_has_title_block(self):
        content = build_users_csv([], generated_on=self.generated_on)
        self.assertEqual(len(content.splitlines()), 6)
        self.assertIn('Total de Usuários,0', content)

    def test_filename_uses_iso_date(self):
        self.assertEqual(users_csv_filename(self.generated_on), 'mindmoney-usuarios-2026-03-31.csv')


class UserReportPdfTests(SimpleTestCase):
    def _transactions(self, count, description='Compra'):
        return tuple(
            TransactionRecord(
                date=FIXED_NOW - timedelta(days=index),
                type='INCOME' if index % 2 == 0 else 'EXPENSE',
                description=f'{description} #{index:02d}',
                amount=100 + index,
            )
            for index in range(count)
        )

    def test_report_with_financial_data_and_transactions(self):
        record = _record(
            1,
            name='Ana',
            email='ana@example.com',
            financial_data=_snapshot(income=5000, expenses=3000, card=1234.5),
            transactions=self._transactions(3),
        )
        pdf = build_user_report_pdf(record)
        self.assertTrue(pdf.startswith(b'%PDF-1.4'))
        self.assertTrue(pdf.endswith(b'%%EOF'))
        self.assertIn(b'Dados Financeiros', pdf)
        self.assertIn(b'R$ 5.000,00', pdf)
        self.assertIn(b'R$ 2.000,00', pdf)
        self.assertIn(b'R$ 1.234,50', pdf)
        self.assertIn('Transações'.encode('cp1252'), pdf)
        self.assertIn(b'Receita', pdf)
        self.assertIn(b'Despesa', pdf)

    def test_report_without_financial_data_omits_table(self):
        record = _record(1, name='Bruno', transactions=self._transactions(2))
        pdf = build_user_report_pdf(record)
        self.assertNotIn(b'Dados Financeiros', pdf)
        self.assertIn(b'Cliente: Bruno', pdf)
        self.assertIn(b'Compra #01', pdf)

    def test_report_without_any_data_renders_identity_only(self):
        pdf = build_user_report_pdf(_record(1))
        self.assertIn(b'Cliente: N/A', pdf)
        self.assertIn(b'Telefone: N/A', pdf)
        self.assertNotIn('Transações'.encode('cp1252'), pdf)

    def test_only_first_ten_transactions_are_listed(self):
        pdf = build_user_report_pdf(_record(1, name='Ana', transactions=self._transactions(12)))
        self.assertIn(b'Compra #09', pdf)
        self.assertNotIn(b'Compra #10', pdf)
        self.assertNotIn(b'Compra #11', pdf)

    def test_parentheses_in_descriptions_are_escaped(self):
        record = _record(1, transactions=(
            TransactionRecord(date=FIXED_NOW, type='EXPENSE', description='Pix (mercado)', amount=10),
        ))
        self.assertIn(b'Pix \\(mercado\\)', build_user_report_pdf(record))

    def test_long_transaction_table_continues_on_next_page(self):
        record = _record(
            1,
            name='Ana',
            financial_data=_snapshot(income=5000),
            transactions=self._transactions(10, description='palavra ' * 75),
        )
        pdf = build_user_report_pdf(record)
        self.assertGreaterEqual(pdf.count(b'/Type /Page '), 2)

    def test_characters_outside_winansi_fall_back_to_base_letter(self):
        pdf = build_user_report_pdf(_record(1, name='José Nguyễn'))
        self.assertIn('Cliente: José Nguyen'.encode('cp1252'), pdf)

    def test_long_identity_values_are_wrapped(self):
        email = 'a' * 150 + '@example.com'
        record = _record(1, name='Ana', email=email, financial_data=_snapshot(income=5000))
        pdf = build_user_report_pdf(record)
        self.assertNotIn(email.encode('cp1252'), pdf)
        self.assertIn(b'(' + b'a' * 80 + b')', pdf)
        self.assertIn(b'Dados Financeiros', pdf)
        self.assertEqual(pdf.count(b'/Type /Page '), 1)

    def test_missing_record_raises_report_error(self):
        with self.assertRaises(ReportError):
            build_user_report_pdf(None)

    def test_filename_slugifies_name(self):
        today = FIXED_NOW.date()
        self.assertEqual(
            user_report_filename(_record(1, name='Ana  Maria Souza'), today),
            'cliente-ana-maria-souza-2026-03-31.pdf',
        )
        self.assertEqual(user_report_filename(_record(1), today), 'cliente-sem-nome-2026-03-31.pdf')


class AdminUsersApiTests(TestCase):
    def setUp(self):
        self.owner = _create_user('owner', role=UserProfile.ROLE_OWNER)
        self.older = _create_user('ana', first_name='Ana', last_name='Souza', phone='11999990000', joined_days_ago=3)
        self.newer = _create_user('bruno', first_name='Bruno', joined_days_ago=1)
        FinancialData.objects.create(
            user=self.older,
            monthly_income=Decimal('5000.00'),
            monthly_expenses=Decimal('3000.00'),
            credit_card_debt=Decimal('500.00'),
        )
        base_date = timezone.now() - timedelta(days=20)
        for index in range(12):
            Transaction.objects.create(
                user=self.older,
                date=base_date + timedelta(days=index),
                type=Transaction.TYPE_EXPENSE,
                description=f'Compra {index}',
                amount=Decimal('10.00') + index,
            )
        ChallengeProgress.objects.create(user=self.older, challenge_key='30-dias', current_day=4)

    def test_anonymous_request_is_denied(self):
        response = self.client.get(reverse('api_admin_users'))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {'error': 'Acesso negado'})

    def test_regular_user_is_denied(self):
        self.client.login(username='ana', password='StrongPass123')
        response = self.client.get(reverse('api_admin_users'))
        self.assertEqual(response.status_code, 403)

    def test_owner_receives_users_newest_first(self):
        self.client.login(username='owner', password='StrongPass123')
        response = self.client.get(reverse('api_admin_users'))
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([item['email'] for item in payload], ['bruno@example.com', 'ana@example.com'])

        bruno, ana = payload
        self.assertIsNone(bruno['financialData'])
        self.assertIsNone(bruno['phone'])
        self.assertEqual(ana['name'], 'Ana Souza')
        self.assertEqual(ana['phone'], '11999990000')
        self.assertEqual(ana['financialData']['monthlyIncome'], 5000.0)
        self.assertEqual(ana['challengeProgress'][0]['challengeKey'], '30-dias')

    def test_transactions_are_capped_and_most_recent_first(self):
        self.client.login(username='owner', password='StrongPass123')
        ana = self.client.get(reverse('api_admin_users')).json()[1]
        descriptions = [item['description'] for item in ana['transactions']]
        self.assertEqual(len(descriptions), 10)
        self.assertEqual(descriptions[0], 'Compra 11')
        self.assertEqual(descriptions[-1], 'Compra 2')

    def test_user_without_transactions_gets_empty_list(self):
        self.client.login(username='owner', password='StrongPass123')
        response = self.client.get(reverse('api_admin_users'))
        self.assertEqual(response.status_code, 200)
        bruno = response.json()[0]
        self.assertEqual(bruno['transactions'], [])
        self.assertEqual(bruno['challengeProgress'], [])

    def test_directory_fetch_caps_each_users_transactions(self):
        records = {record.id: record for record in fetch_user_directory()}
        self.assertEqual(len(records[self.older.id].transactions), 10)
        self.assertEqual(records[self.newer.id].transactions, ())
        single = fetch_user_record(self.older.id)
        self.assertEqual(single.transactions[0].description, 'Compra 11')
        self.assertIsNone(fetch_user_record(self.owner.id))

    def test_other_owners_are_not_listed(self):
        _create_user('second_owner', role=UserProfile.ROLE_OWNER)
        self.client.login(username='owner', password='StrongPass123')
        emails = [item['email'] for item in self.client.get(reverse('api_admin_users')).json()]
        self.assertNotIn('second_owner@example.com', emails)
        self.assertNotIn('owner@example.com', emails)

    def test_post_is_not_allowed(self):
        self.client.login(username='owner', password='StrongPass123')
        response = self.client.post(reverse('api_admin_users'))
        self.assertEqual(response.status_code, 405)

    @patch('core.views.fetch_user_directory', side_effect=DatabaseError('db down: secret detail'))
    def test_database_failure_returns_generic_error(self, mocked_fetch):
        self.client.login(username='owner', password='StrongPass123')
        with self.assertLogs('core.views', level='ERROR'):
            response = self.client.get(reverse('api_admin_users'))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Erro interno do servidor'})
        self.assertNotIn(b'secret detail', response.content)
        mocked_fetch.assert_called_once()


class AdminDashboardViewTests(TestCase):
    def setUp(self):
        self.owner = _create_user('owner', role=UserProfile.ROLE_OWNER)
        self.ana = _create_user('ana', first_name='Ana', phone='11999990000', joined_days_ago=2)
        self.bruno = _create_user('bruno', first_name='Bruno', joined_days_ago=60)
        FinancialData.objects.create(
            user=self.ana,
            monthly_income=Decimal('5000.00'),
            monthly_expenses=Decimal('3000.00'),
            loan_debt=Decimal('1000.00'),
        )

    def test_anonymous_user_is_sent_to_login(self):
        response = self.client.get(reverse('admin_dashboard'))
        self.assertRedirects(
            response,
            f"{reverse('login')}?next={reverse('admin_dashboard')}",
            fetch_redirect_response=False,
        )

    def test_regular_user_is_sent_to_user_dashboard(self):
        self.client.login(username='ana', password='StrongPass123')
        response = self.client.get(reverse('admin_dashboard'))
        self.assertRedirects(response, '/dashboard/', fetch_redirect_response=False)

    def test_owner_sees_all_users_and_summary(self):
        self.client.login(username='owner', password='StrongPass123')
        response = self.client.get(reverse('admin_dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'Usuários (2)')
        self.assertContains(response, 'Completo')
        self.assertContains(response, 'Pendente')
        self.assertContains(response, 'R$ 5.000,00')
        self.assertEqual(response.context['stats']['users_with_data'], 1)
        self.assertEqual(response.context['stats']['total_debts'], 1000)

    def test_query_filters_table_but_not_summary(self):
        self.client.login(username='owner', password='StrongPass123')
        response = self.client.get(reverse('admin_dashboard'), {'q': 'BRUNO'})
        self.assertContains(response, 'Usuários (1)')
        self.assertEqual([record.id for record in response.context['user_records']], [self.bruno.id])
        self.assertEqual(response.context['stats']['total_users'], 2)

    def test_period_filter_and_unknown_period(self):
        self.client.login(username='owner', password='StrongPass123')
        response = self.client.get(reverse('admin_dashboard'), {'period': 'week'})
        self.assertEqual([record.id for record in response.context['user_records']], [self.ana.id])

        response = self.client.get(reverse('admin_dashboard'), {'period': 'decade'})
        self.assertEqual(response.context['period'], 'all')
        self.assertEqual(len(response.context['user_records']), 2)

    def test_no_match_shows_empty_state(self):
        self.client.login(username='owner', password='StrongPass123')
        response = self.client.get(reverse('admin_dashboard'), {'q': 'zzz'})
        self.assertContains(response, 'Nenhum usuário encontrado')

    @patch('core.views.fetch_user_directory', side_effect=DatabaseError('db down'))
    def test_load_failure_shows_notification_and_empty_list(self, mocked_fetch):
        self.client.login(username='owner', password='StrongPass123')
        with self.assertLogs('core.views', level='ERROR'):
            response = self.client.get(reverse('admin_dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'Erro ao carregar usuários')
        self.assertContains(response, 'Nenhum usuário encontrado')
        self.assertEqual(response.context['stats']['total_users'], 0)

    @patch('core.views.fetch_user_directory', side_effect=RuntimeError('unexpected'))
    def test_any_load_error_shows_notification(self, mocked_fetch):
        self.client.login(username='owner', password='StrongPass123')
        with self.assertLogs('core.views', level='ERROR'):
            response = self.client.get(reverse('admin_dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'Erro ao carregar usuários')
        self.assertEqual(response.context['user_records'], [])


class AdminUserDetailAndExportTests(TestCase):
    def setUp(self):
        self.owner = _create_user('owner', role=UserProfile.ROLE_OWNER)
        self.ana = _create_user('ana', first_name='Ana', last_name='Souza')
        self.bruno = _create_user('bruno', first_name='Bruno')
        FinancialData.objects.create(
            user=self.ana,
            monthly_income=Decimal('5000.00'),
            monthly_expenses=Decimal('3000.00'),
            credit_card_debt=Decimal('500.00'),
        )
        for index in range(7):
            Transaction.objects.create(
                user=self.ana,
                date=timezone.now() - timedelta(days=index),
                type=Transaction.TYPE_INCOME if index == 0 else Transaction.TYPE_EXPENSE,
                description=f'Lançamento {index}',
                amount=Decimal('25.00'),
            )
        self.client.login(username='owner', password='StrongPass123')

    def test_detail_view_embeds_chart_payload_and_recent_transactions(self):
        response = self.client.get(reverse('admin_user_details', args=[self.ana.id]))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'chartPayload')
        self.assertEqual(response.context['chart_payload']['summary']['values'], [5000, 3000, 2000])
        self.assertEqual(response.context['chart_payload']['debts']['values'], [500, 0, 0])
        self.assertEqual(len(response.context['recent_transactions']), 5)
        self.assertContains(response, '+R$ 25,00')
        self.assertContains(response, '-R$ 25,00')

    def test_detail_view_without_financial_data(self):
        response = self.client.get(reverse('admin_user_details', args=[self.bruno.id]))
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.context['chart_payload'])
        self.assertNotContains(response, 'chartPayload')

    def test_detail_view_hides_owner_accounts(self):
        response = self.client.get(reverse('admin_user_details', args=[self.owner.id]))
        self.assertEqual(response.status_code, 404)

    def test_users_csv_download_is_logged(self):
        response = self.client.get(reverse('admin_export_users_csv'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'text/csv; charset=utf-8')
        today = timezone.localdate().isoformat()
        self.assertEqual(
            response['Content-Disposition'],
            f'attachment; filename="mindmoney-usuarios-{today}.csv"',
        )
        content = response.content.decode('utf-8')
        self.assertEqual(len(content.splitlines()), 8)
        self.assertIn('Ana Souza', content)
        self.assertTrue(AuditLog.objects.filter(actor=self.owner, action='export_users_csv').exists())

    def test_user_pdf_download_is_logged(self):
        response = self.client.get(reverse('admin_user_report', args=[self.ana.id]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        today = timezone.localdate().isoformat()
        self.assertIn(f'filename="cliente-ana-souza-{today}.pdf"', response['Content-Disposition'])
        self.assertIn(b'Dados Financeiros', response.content)
        log = AuditLog.objects.get(action='export_user_pdf')
        self.assertEqual(log.target_user, self.ana)

    def test_pdf_failure_redirects_with_notification(self):
        with patch('core.views.build_user_report_pdf', side_effect=ReportError('broken')):
            with self.assertLogs('core.views', level='ERROR'):
                response = self.client.get(reverse('admin_user_report', args=[self.ana.id]), follow=True)
        self.assertRedirects(response, reverse('admin_dashboard'))
        self.assertContains(response, 'Erro ao gerar relatório')
        self.assertFalse(AuditLog.objects.filter(action='export_user_pdf').exists())

    def test_csv_database_failure_redirects_with_notification(self):
        with patch('core.views.fetch_user_directory', side_effect=DatabaseError('db down')):
            with self.assertLogs('core.views', level='ERROR'):
                response = self.client.get(reverse('admin_export_users_csv'), follow=True)
        self.assertRedirects(response, reverse('admin_dashboard'))
        self.assertContains(response, 'Erro ao gerar relatório')
        self.assertFalse(AuditLog.objects.filter(action='export_users_csv').exists())

    def test_regular_user_cannot_download_reports(self):
        self.client.logout()
        self.client.login(username='ana', password='StrongPass123')
        response = self.client.get(reverse('admin_export_users_csv'))
        self.assertRedirects(response, '/dashboard/', fetch_redirect_response=False)
        self.assertFalse(AuditLog.objects.exists())
