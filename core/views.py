import logging
from functools import wraps

from django.conf import settings
from django.contrib import messages
from django.contrib.auth.views import redirect_to_login
from django.db import DatabaseError
from django.http import Http404, HttpResponse, JsonResponse
from django.shortcuts import redirect, render
from django.utils.http import content_disposition_header
from django.views.decorators.http import require_GET

from .directory import (
    PERIOD_ALL,
    PERIOD_CHOICES,
    PERIODS,
    fetch_user_directory,
    fetch_user_record,
    filter_users,
    overall_stats,
    user_chart_data,
)
from .models import AuditLog, UserProfile
from .report_utils import (
    ReportError,
    build_user_report_pdf,
    build_users_csv,
    user_report_filename,
    users_csv_filename,
)

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = 'Acesso negado'
INTERNAL_ERROR_MESSAGE = 'Erro interno do servidor'
LOAD_USERS_ERROR_MESSAGE = 'Erro ao carregar usuários'
REPORT_ERROR_MESSAGE = 'Erro ao gerar relatório'
DETAIL_TRANSACTION_LIMIT = 5


def _is_owner(user):
    if not user.is_authenticated:
        return False
    profile = getattr(user, 'profile', None)
    return profile is not None and profile.role == UserProfile.ROLE_OWNER


def owner_required(view_func):
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return redirect_to_login(request.get_full_path())
        if not _is_owner(request.user):
            messages.error(request, 'Acesso restrito ao administrador.')
            return redirect(settings.MINDMONEY_USER_DASHBOARD_URL)
        return view_func(request, *args, **kwargs)

    return _wrapped


def _log_admin_action(actor, action, target_user_id=None, details=''):
    AuditLog.objects.create(
        actor=actor,
        target_user_id=target_user_id,
        action=action,
        details=details,
    )


def _render(request, relative_path, context=None):
    return render(request, f'admin/{relative_path}', context or {})


def _load_directory(request):
    try:
        return fetch_user_directory()
    except Exception:
        logger.exception('Failed to load the user directory')
        messages.error(request, LOAD_USERS_ERROR_MESSAGE)
        return []


def _get_record_or_404(user_id):
    record = fetch_user_record(user_id)
    if record is None:
        raise Http404('User not found.')
    return record


def _attachment(content, content_type, filename):
    response = HttpResponse(content, content_type=content_type)
    response['Content-Disposition'] = content_disposition_header(True, filename)
    return response


def root_redirect(request):
    return redirect('admin_dashboard')


@owner_required
def admin_dashboard(request):
    query = request.GET.get('q', '').strip()
    period = (request.GET.get('period') or PERIOD_ALL).strip().lower()
    if period not in PERIODS:
        period = PERIOD_ALL

    records = _load_directory(request)
    filtered = filter_users(records, query=query, period=period)

    context = {
        'query': query,
        'period': period,
        'period_choices': PERIOD_CHOICES,
        'user_records': filtered,
        'filtered_count': len(filtered),
        'stats': overall_stats(records),
    }
    return _render(request, 'dashboard.html', context)


@owner_required
def admin_user_detail(request, user_id):
    record = _get_record_or_404(user_id)
    context = {
        'record': record,
        'chart_payload': user_chart_data(record),
        'recent_transactions': record.transactions[:DETAIL_TRANSACTION_LIMIT],
    }
    return _render(request, 'user_details.html', context)


@owner_required
def admin_user_report(request, user_id):
    record = _get_record_or_404(user_id)
    try:
        pdf_bytes = build_user_report_pdf(record)
    except ReportError:
        logger.exception('PDF report failed for user %s', user_id)
        messages.error(request, REPORT_ERROR_MESSAGE)
        return redirect('admin_dashboard')

    response = _attachment(pdf_bytes, 'application/pdf', user_report_filename(record))
    _log_admin_action(
        request.user,
        'export_user_pdf',
        target_user_id=record.id,
        details=f'Downloaded PDF report for user {record.id}.',
    )
    return response


@owner_required
def admin_export_users_csv(request):
    try:
        records = fetch_user_directory()
        csv_text = build_users_csv(records)
    except DatabaseError:
        logger.exception('Users CSV export failed')
        messages.error(request, REPORT_ERROR_MESSAGE)
        return redirect('admin_dashboard')

    response = _attachment(csv_text.encode('utf-8'), 'text/csv; charset=utf-8', users_csv_filename())
    _log_admin_action(
        request.user,
        'export_users_csv',
        details=f'Downloaded users CSV ({len(records)} users).',
    )
    return response


@require_GET
def api_admin_users(request):
    try:
        if not _is_owner(request.user):
            return JsonResponse({'error': ACCESS_DENIED_MESSAGE}, status=403)
        payload = [record.to_dict() for record in fetch_user_directory()]
        return JsonResponse(payload, safe=False)
    except Exception:
        logger.exception('GET /api/admin/users failed')
        return JsonResponse({'error': INTERNAL_ERROR_MESSAGE}, status=500)
