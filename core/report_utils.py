import csv
import io
import re
import unicodedata

from django.utils import timezone

from .formatting import NOT_AVAILABLE, format_brl, format_date_br, format_plain_amount
from .records import RECENT_TRANSACTION_LIMIT

REPORT_BRAND = 'MindMoney'
USERS_CSV_TITLE = f'{REPORT_BRAND} - Relatório de Usuários'
USERS_CSV_HEADER = [
    'Nome',
    'E-mail',
    'Telefone',
    'Data Cadastro',
    'Último Acesso',
    'Renda Mensal',
    'Gastos Mensais',
    'Total Dívidas',
]
USER_REPORT_TITLE = f'{REPORT_BRAND} - Relatório do Cliente'

MM = 72 / 25.4
PAGE_WIDTH = 210 * MM
PAGE_HEIGHT = 297 * MM
TABLE_MARGIN_MM = 14
PAGE_TOP_MM = 20
PAGE_BOTTOM_MM = 283
CELL_PADDING_MM = 1.8
CELL_FONT_SIZE = 10
CELL_LINE_MM = 4.3
HEAD_FILL = (51, 65, 85)
GRID_STROKE = (200, 200, 200)

IDENTITY_TOP_MM = 35
IDENTITY_LINE_MM = 10
IDENTITY_WRAP_MM = 5
IDENTITY_END_MM = 85
# 170 mm of 12 pt Helvetica at roughly half an em per character.
IDENTITY_MAX_CHARS = 80

FINANCIAL_TABLE_START_MM = 105
TRANSACTIONS_FALLBACK_Y_MM = 150


class ReportError(Exception):
    """Raised when a report cannot be produced from the given record(s)."""


def _today():
    return timezone.localdate()


def users_csv_filename(generated_on=None):
    generated_on = generated_on or _today()
    return f'mindmoney-usuarios-{generated_on.isoformat()}.csv'


def user_report_filename(record, generated_on=None):
    generated_on = generated_on or _today()
    name = (record.name or '').strip()
    slug = re.sub(r'\s+', '-', name).lower() if name else 'sem-nome'
    return f'cliente-{slug}-{generated_on.isoformat()}.pdf'


def build_users_csv(records, generated_on=None):
    """Title block, header and one row per user; returned as text."""
    generated_on = generated_on or _today()
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow([USERS_CSV_TITLE])
    writer.writerow([])
    writer.writerow(['Data de Geração', format_date_br(generated_on)])
    writer.writerow(['Total de Usuários', str(len(records))])
    writer.writerow([])
    writer.writerow(USERS_CSV_HEADER)

    for record in records:
        snapshot = record.financial_data
        writer.writerow(
            [
                record.name or NOT_AVAILABLE,
                record.email or NOT_AVAILABLE,
                record.phone or NOT_AVAILABLE,
                format_date_br(record.created_at),
                format_date_br(record.last_access_at),
                format_plain_amount(snapshot.monthly_income if snapshot else 0),
                format_plain_amount(snapshot.monthly_expenses if snapshot else 0),
                format_plain_amount(snapshot.total_debts if snapshot else 0),
            ]
        )
    return buffer.getvalue()


def _escape_pdf_text(text):
    return text.replace('\\', '\\\\').replace('(', '\\(').replace(')', '\\)')


def _pdf_safe_text(text):
    """Keep WinAnsi characters; fold the rest to their unaccented base letter, else '?'."""
    safe = []
    for char in text:
        try:
            char.encode('cp1252')
        except UnicodeEncodeError:
            base = unicodedata.normalize('NFKD', char).encode('cp1252', errors='ignore').decode('cp1252')
            char = base or '?'
        safe.append(char)
    return ''.join(safe)


def _pdf_wrap_lines(text, max_chars=88):
    words = str(text or '').split()
    if not words:
        return ['']

    lines = []
    current = ''
    for word in words:
        while len(word) > max_chars:
            if current:
                lines.append(current)
                current = ''
            lines.append(word[:max_chars])
            word = word[max_chars:]
        candidate = f'{current} {word}' if current else word
        if len(candidate) <= max_chars:
            current = candidate
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines or ['']


def _rgb(color):
    return ' '.join(f'{channel / 255:.3f}' for channel in color)


class _PdfCanvas:
    """A4 pages drawn with positions in millimetres from the top-left corner."""

    def __init__(self):
        self.pages = [[]]
        self.last_table_end = None

    @property
    def commands(self):
        return self.pages[-1]

    def add_page(self):
        self.pages.append([])

    def text(self, x_mm, y_mm, text, size=12, bold=False, color=None):
        font = '/F2' if bold else '/F1'
        fill = f'{_rgb(color)} rg ' if color else ''
        self.commands.append(
            f'BT {fill}{font} {size} Tf {x_mm * MM:.2f} {PAGE_HEIGHT - y_mm * MM:.2f} Td '
            f'({_escape_pdf_text(_pdf_safe_text(str(text)))}) Tj ET'
        )

    def rect(self, x_mm, y_mm, width_mm, height_mm, fill=None, stroke=None):
        x = x_mm * MM
        y = PAGE_HEIGHT - (y_mm + height_mm) * MM
        box = f'{x:.2f} {y:.2f} {width_mm * MM:.2f} {height_mm * MM:.2f} re'
        if fill:
            self.commands.extend(['q', f'{_rgb(fill)} rg', f'{box} f', 'Q'])
        if stroke:
            self.commands.extend(['q', f'{_rgb(stroke)} RG', '0.28 w', f'{box} S', 'Q'])

    def _draw_row(self, cells, widths, y_mm, height_mm, head=False):
        x_mm = TABLE_MARGIN_MM
        for lines, width_mm in zip(cells, widths):
            self.rect(x_mm, y_mm, width_mm, height_mm, fill=HEAD_FILL if head else None, stroke=GRID_STROKE)
            baseline = y_mm + CELL_PADDING_MM + CELL_LINE_MM * 0.8
            for line in lines:
                self.text(
                    x_mm + CELL_PADDING_MM,
                    baseline,
                    line,
                    size=CELL_FONT_SIZE,
                    bold=head,
                    color=(255, 255, 255) if head else (0, 0, 0),
                )
                baseline += CELL_LINE_MM
            x_mm += width_mm

    def table(self, start_y_mm, head, body, widths):
        """Grid table; rows that overflow the page continue on a new page under a repeated header."""
        max_chars = [
            max(1, int((width_mm - 2 * CELL_PADDING_MM) * MM / (CELL_FONT_SIZE * 0.5)))
            for width_mm in widths
        ]

        def wrap(row):
            return [_pdf_wrap_lines(cell, limit) for cell, limit in zip(row, max_chars)]

        def height(wrapped):
            return max(len(lines) for lines in wrapped) * CELL_LINE_MM + 2 * CELL_PADDING_MM

        wrapped_head = wrap(head)
        head_height = height(wrapped_head)
        cursor = start_y_mm
        self._draw_row(wrapped_head, widths, cursor, head_height, head=True)
        cursor += head_height

        for row in body:
            wrapped = wrap(row)
            row_height = height(wrapped)
            if cursor + row_height > PAGE_BOTTOM_MM:
                self.add_page()
                cursor = PAGE_TOP_MM
                self._draw_row(wrapped_head, widths, cursor, head_height, head=True)
                cursor += head_height
            self._draw_row(wrapped, widths, cursor, row_height)
            cursor += row_height

        self.last_table_end = cursor
        return cursor

    def to_bytes(self):
        stream_objects = []
        for page in self.pages:
            stream = '\n'.join(page)
            stream_bytes = stream.encode('cp1252', errors='replace')
            stream_objects.append(
                b'<< /Length ' + str(len(stream_bytes)).encode('ascii') + b' >>\nstream\n'
                + stream_bytes + b'\nendstream'
            )

        page_count = len(stream_objects)
        catalog_id = 1
        first_page_id = 5
        first_stream_id = first_page_id + page_count

        kids_refs = ' '.join(f'{first_page_id + idx} 0 R' for idx in range(page_count))
        objects = [
            b'<< /Type /Catalog /Pages 2 0 R >>',
            f'<< /Type /Pages /Kids [{kids_refs}] /Count {page_count} >>'.encode('ascii'),
            b'<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>',
            b'<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica-Bold /Encoding /WinAnsiEncoding >>',
        ]
        for idx in range(page_count):
            objects.append(
                (
                    '<< /Type /Page /Parent 2 0 R '
                    f'/MediaBox [0 0 {PAGE_WIDTH:.2f} {PAGE_HEIGHT:.2f}] '
                    f'/Contents {first_stream_id + idx} 0 R '
                    '/Resources << /Font << /F1 3 0 R /F2 4 0 R >> >> >>'
                ).encode('ascii')
            )
        objects.extend(stream_objects)

        chunks = [b'%PDF-1.4\n']
        offsets = []
        current_offset = len(chunks[0])
        for index, obj in enumerate(objects, start=1):
            obj_bytes = f'{index} 0 obj\n'.encode('ascii') + obj + b'\nendobj\n'
            offsets.append(current_offset)
            chunks.append(obj_bytes)
            current_offset += len(obj_bytes)

        xref_lines = [f'xref\n0 {len(objects) + 1}\n', '0000000000 65535 f \n']
        xref_lines.extend(f'{offset:010} 00000 n \n' for offset in offsets)
        trailer = (
            ''.join(xref_lines)
            + f'trailer\n<< /Size {len(objects) + 1} /Root {catalog_id} 0 R >>\n'
            f'startxref\n{current_offset}\n%%EOF'
        )
        chunks.append(trailer.encode('ascii'))
        return b''.join(chunks)


def _financial_rows(snapshot):
    return [
        ['Renda Mensal', format_brl(snapshot.monthly_income)],
        ['Gastos Mensais', format_brl(snapshot.monthly_expenses)],
        ['Total Livre', format_brl(snapshot.free_total)],
        ['Cartão de Crédito', format_brl(snapshot.credit_card_debt)],
        ['Empréstimos', format_brl(snapshot.loan_debt)],
        ['Cheque Especial', format_brl(snapshot.overdraft_debt)],
    ]


def _transaction_rows(transactions):
    return [
        [
            format_date_br(item.date),
            item.type_label,
            item.description,
            format_brl(item.amount),
        ]
        for item in transactions[:RECENT_TRANSACTION_LIMIT]
    ]


def build_user_report_pdf(record):
    """Per-user PDF: identity block, financial table and recent transactions."""
    if record is None:
        raise ReportError('No user record to report on.')

    try:
        canvas = _PdfCanvas()
        canvas.text(20, 20, USER_REPORT_TITLE, size=20, bold=True)
        identity_lines = [
            f'Cliente: {record.name or NOT_AVAILABLE}',
            f'E-mail: {record.email or NOT_AVAILABLE}',
            f'Telefone: {record.phone or NOT_AVAILABLE}',
            f'Data de Cadastro: {format_date_br(record.created_at)}',
            f'Último Acesso: {format_date_br(record.last_access_at)}',
        ]
        cursor = IDENTITY_TOP_MM
        for line in identity_lines:
            for index, piece in enumerate(_pdf_wrap_lines(line, max_chars=IDENTITY_MAX_CHARS)):
                if index:
                    cursor += IDENTITY_WRAP_MM
                canvas.text(20, cursor, piece, size=12)
            cursor += IDENTITY_LINE_MM
        # Long identity values push the sections below down by the extra height.
        shift = max(0, cursor - IDENTITY_END_MM)

        if record.financial_data is not None:
            canvas.text(20, 95 + shift, 'Dados Financeiros', size=16, bold=True)
            canvas.table(
                FINANCIAL_TABLE_START_MM + shift,
                head=['Item', 'Valor'],
                body=_financial_rows(record.financial_data),
                widths=[91, 91],
            )

        if record.transactions:
            last_y = canvas.last_table_end or TRANSACTIONS_FALLBACK_Y_MM + shift
            if last_y + 40 > PAGE_BOTTOM_MM:
                canvas.add_page()
                last_y = PAGE_TOP_MM - 20
            canvas.text(20, last_y + 20, 'Transações', size=16, bold=True)
            canvas.table(
                last_y + 30,
                head=['Data', 'Tipo', 'Descrição', 'Valor'],
                body=_transaction_rows(record.transactions),
                widths=[28, 25, 94, 35],
            )

        return canvas.to_bytes()
    except (TypeError, ValueError, AttributeError) as exc:
        raise ReportError(f'Could not build report for user {record.id}.') from exc
