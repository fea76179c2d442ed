# Overview: Renders invoices and credit notes to PDF with the RKSV signature block.

"""
Invoice PDF rendering with ReportLab.

Layout (A4): company header, document title and number, customer block,
line table, VAT breakdown, totals, and the RKSV block (Kassen-ID,
signature, signing time). Unsigned documents print a visible notice
instead of a signature.
"""

from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from ..models import Invoice
from ..models.catalog import TAX_RATES_BPS


FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 20 * mm
BOTTOM_LIMIT = 45 * mm


def format_eur(cents: int | None) -> str:
    """1234567 -> "12.345,67 EUR" (Austrian formatting)."""
    cents = cents or 0
    sign = "-" if cents < 0 else ""
    euros, rest = divmod(abs(cents), 100)
    grouped = f"{euros:,}".replace(",", ".")
    return f"{sign}{grouped},{rest:02d} EUR"


def _date(dt) -> str:
    return dt.strftime("%d.%m.%Y") if dt else ""


def _wrap(text: str, limit: int) -> list[str]:
    """Greedy word wrap on character count; long signatures are hard-split."""
    if not text:
        return [""]
    lines, current = [], ""
    for word in text.split(" "):
        while len(word) > limit:
            if current:
                lines.append(current)
                current = ""
            lines.append(word[:limit])
            word = word[limit:]
        candidate = f"{current} {word}".strip()
        if len(candidate) > limit:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


class _InvoiceCanvas:
    def __init__(self, invoice: Invoice):
        self.invoice = invoice
        self.buffer = BytesIO()
        self.c = canvas.Canvas(self.buffer, pagesize=A4)
        self.c.setTitle(invoice.invoice_number)
        self.c.setAuthor(invoice.company_name or "")
        self.y = PAGE_HEIGHT - MARGIN

    def _new_page(self):
        self.c.showPage()
        self.y = PAGE_HEIGHT - MARGIN
        self.c.setFont(FONT, 8)
        self.c.drawString(MARGIN, self.y, f"{self.invoice.invoice_number} (Fortsetzung)")
        self.y -= 10 * mm

    def _ensure_space(self, needed: float) -> bool:
        if self.y - needed < BOTTOM_LIMIT:
            self._new_page()
            return True
        return False

    def header(self):
        inv = self.invoice
        c = self.c
        c.setFont(FONT_BOLD, 14)
        c.drawString(MARGIN, self.y, inv.company_name or "")
        c.setFont(FONT, 9)
        lines = [inv.company_address, f"UID: {inv.company_tax_number}", inv.company_phone, inv.company_email]
        for line in filter(None, lines):
            self.y -= 4.5 * mm
            c.drawString(MARGIN, self.y, line)

        title = "Gutschrift / Storno" if inv.is_credit_note else "Rechnung"
        top = PAGE_HEIGHT - MARGIN
        c.setFont(FONT_BOLD, 16)
        c.drawRightString(PAGE_WIDTH - MARGIN, top, title)
        c.setFont(FONT, 9)
        c.drawRightString(PAGE_WIDTH - MARGIN, top - 6 * mm, f"Nr.: {inv.invoice_number}")
        c.drawRightString(PAGE_WIDTH - MARGIN, top - 10.5 * mm, f"Datum: {_date(inv.invoice_date)}")
        if not inv.is_credit_note:
            c.drawRightString(PAGE_WIDTH - MARGIN, top - 15 * mm, f"Fällig: {_date(inv.due_date)}")
        elif inv.original_invoice is not None:
            c.drawRightString(PAGE_WIDTH - MARGIN, top - 15 * mm, f"Zu Rechnung: {inv.original_invoice.invoice_number}")

        self.y = min(self.y, top - 20 * mm) - 8 * mm

    def customer(self):
        inv = self.invoice
        if not inv.customer_name:
            return
        c = self.c
        c.setFont(FONT_BOLD, 10)
        c.drawString(MARGIN, self.y, "Kunde")
        c.setFont(FONT, 9)
        for line in filter(None, [inv.customer_name, inv.customer_address, inv.customer_tax_number and f"UID: {inv.customer_tax_number}"]):
            self.y -= 4.5 * mm
            c.drawString(MARGIN, self.y, line)
        self.y -= 8 * mm

    def items(self):
        c = self.c
        cols = [MARGIN, MARGIN + 95 * mm, MARGIN + 115 * mm, MARGIN + 145 * mm]
        right = PAGE_WIDTH - MARGIN

        def head():
            c.setFont(FONT_BOLD, 9)
            c.drawString(cols[0], self.y, "Bezeichnung")
            c.drawRightString(cols[1] + 15 * mm, self.y, "Menge")
            c.drawRightString(cols[2] + 28 * mm, self.y, "Einzelpreis")
            c.drawRightString(right, self.y, "Gesamt (netto)")
            self.y -= 2 * mm
            c.setStrokeColor(colors.grey)
            c.line(MARGIN, self.y, right, self.y)
            self.y -= 5 * mm

        head()
        c.setFont(FONT, 9)
        for item in self.invoice.invoice_items or []:
            if self._ensure_space(6 * mm):
                head()
                c.setFont(FONT, 9)
            quantity = item.get("quantity", 1)
            unit = item.get("unit_price_cents", 0)
            line_total = item.get("line_total_cents", quantity * unit)
            if self.invoice.is_credit_note:
                unit, line_total = -unit, -line_total
            c.drawString(cols[0], self.y, str(item.get("product_name", ""))[:55])
            c.drawRightString(cols[1] + 15 * mm, self.y, str(quantity))
            c.drawRightString(cols[2] + 28 * mm, self.y, format_eur(unit))
            c.drawRightString(right, self.y, format_eur(line_total))
            self.y -= 5 * mm
        self.y -= 3 * mm

    def totals(self):
        inv = self.invoice
        c = self.c
        right = PAGE_WIDTH - MARGIN
        label_x = right - 60 * mm
        self._ensure_space(40 * mm)

        sign = -1 if inv.is_credit_note else 1
        c.setFont(FONT, 9)
        for tax_type, detail in sorted((inv.tax_details or {}).items()):
            rate = detail.get("rate_bps", TAX_RATES_BPS.get(tax_type, 0)) / 100
            c.drawString(label_x, self.y, f"USt {rate:g}% auf {format_eur(sign * detail.get('net_cents', 0))}")
            c.drawRightString(right, self.y, format_eur(sign * detail.get("tax_cents", 0)))
            self.y -= 4.5 * mm

        rows = [
            ("Netto", inv.subtotal_cents, FONT),
            ("USt", inv.tax_cents, FONT),
            ("Gesamt", inv.total_cents, FONT_BOLD),
        ]
        if not inv.is_credit_note and inv.paid_cents:
            rows.append(("Bezahlt", inv.paid_cents, FONT))
            rows.append(("Offen", inv.remaining_cents, FONT_BOLD))
        for label, amount, font in rows:
            c.setFont(font, 10)
            c.drawString(label_x, self.y, label)
            c.drawRightString(right, self.y, format_eur(amount))
            self.y -= 5 * mm

        if inv.is_credit_note and inv.storno_reason_code:
            self.y -= 3 * mm
            c.setFont(FONT, 9)
            reason = inv.storno_reason_code + (f": {inv.storno_reason_text}" if inv.storno_reason_text else "")
            for line in _wrap(f"Grund: {reason}", 95):
                c.drawString(MARGIN, self.y, line)
                self.y -= 4.5 * mm

    def signature_block(self):
        inv = self.invoice
        c = self.c
        box_height = 28 * mm
        bottom = 15 * mm
        c.setStrokeColor(colors.black)
        c.setLineWidth(0.5)
        c.rect(MARGIN, bottom, PAGE_WIDTH - 2 * MARGIN, box_height)

        y = bottom + box_height - 5 * mm
        c.setFont(FONT_BOLD, 9)
        c.drawString(MARGIN + 3 * mm, y, "RKSV Signatur")
        c.setFont(FONT, 8)
        y -= 4.5 * mm
        c.drawString(MARGIN + 3 * mm, y, f"Kassen-ID: {inv.kassen_id or '-'}")
        if inv.tse_timestamp:
            c.drawRightString(PAGE_WIDTH - MARGIN - 3 * mm, y, f"Signiert: {inv.tse_timestamp.strftime('%d.%m.%Y %H:%M:%S')} UTC")

        if inv.tse_signature:
            for line in _wrap(inv.tse_signature, 110)[:3]:
                y -= 4 * mm
                c.drawString(MARGIN + 3 * mm, y, line)
        else:
            y -= 4.5 * mm
            c.setFillColor(colors.red)
            c.drawString(MARGIN + 3 * mm, y, "Beleg nicht signiert - kein gültiger Registrierkassenbeleg")
            c.setFillColor(colors.black)

    def render(self) -> bytes:
        self.header()
        self.customer()
        self.items()
        self.totals()
        self.signature_block()
        self.c.showPage()
        self.c.save()
        return self.buffer.getvalue()


def render_invoice(invoice: Invoice) -> bytes:
    """Render an invoice or credit note as PDF bytes."""
    return _InvoiceCanvas(invoice).render()
