"""
Repair Quote Builder

Turns a repair into a printable quote: totals with VAT, an ordered list of
localized sections, and (optionally) a PDF rendered with fpdf2.

Totals are derived on demand and never stored. The section order and which
sections appear depend only on the repair, never on the locale:

    header           shop name + "Repair Quote"
    meta             date (repair createdAt) + quote number (repair id)
    client           name, phone (only when present), vehicle, engine size
    services         Service/Price table          (repair has selected services)
    legacy_repairs   free-text repair description (otherwise)
    financial        subtotal, VAT, total
    additional_info  only when the repair has notes
    terms            two fixed clauses
    closing          sign-off

Usage:
    from tools.shop.quotes import build_quote, render_pdf

    doc = build_quote(repair, locale="bg")
    pdf_bytes = render_pdf(doc, font_path="/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf")
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Any

from core.errors import QuoteRenderError
from tools.shop.i18n import format_date, format_money, label, resolve_locale
from tools.shop.records import Repair

logger = logging.getLogger("shop.quotes")

DEFAULT_VAT_RATE = 0.20
DEFAULT_VALIDITY_DAYS = 7

_CENT = Decimal("0.01")

# Looked up when no font_path is configured.
_FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/Library/Fonts/DejaVuSans.ttf",
)


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    vat: Decimal
    total: Decimal

    def to_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "vat": float(self.vat),
            "total": float(self.total),
        }


def calculate(cost, vat_rate: float = DEFAULT_VAT_RATE) -> QuoteTotals:
    """Subtotal, VAT and total for a repair cost, rounded half-up to cents.

    >>> calculate(100).total
    Decimal('120.00')
    """
    subtotal = Decimal(str(cost or 0)).quantize(_CENT, rounding=ROUND_HALF_UP)
    vat = (subtotal * Decimal(str(vat_rate))).quantize(_CENT, rounding=ROUND_HALF_UP)
    return QuoteTotals(subtotal=subtotal, vat=vat, total=subtotal + vat)


# ---------------------------------------------------------------------------
# Document model
# ---------------------------------------------------------------------------

@dataclass
class QuoteSection:
    """One block of the quote.

    Attributes:
        key:     Stable section identifier ("client", "financial", ...).
        title:   Localized heading, empty for untitled blocks.
        rows:    Label/value pairs.
        columns: Column headings when ``rows`` is a table.
        lines:   Free-text paragraphs.
    """
    key: str
    title: str = ""
    rows: list[tuple[str, str]] = field(default_factory=list)
    columns: tuple[str, str] | None = None
    lines: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "title": self.title,
            "rows": [list(r) for r in self.rows],
            "columns": list(self.columns) if self.columns else None,
            "lines": self.lines,
        }


@dataclass
class QuoteDocument:
    repair_id: str
    locale: str
    filename: str
    totals: QuoteTotals
    sections: list[QuoteSection] = field(default_factory=list)

    @property
    def section_keys(self) -> list[str]:
        return [s.key for s in self.sections]

    def section(self, key: str) -> QuoteSection | None:
        for s in self.sections:
            if s.key == key:
                return s
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "repairId": self.repair_id,
            "locale": self.locale,
            "filename": self.filename,
            "totals": self.totals.to_dict(),
            "sections": [s.to_dict() for s in self.sections],
        }


def quote_filename(repair_id: str, locale: str = "en") -> str:
    return label("filename", resolve_locale(locale)).format(id=repair_id)


def build_quote(
    repair: Repair,
    locale: str = "en",
    vat_rate: float = DEFAULT_VAT_RATE,
    validity_days: int = DEFAULT_VALIDITY_DAYS,
) -> QuoteDocument:
    """Lay out the quote for ``repair`` in ``locale``."""
    loc = resolve_locale(locale)
    t = partial(label, locale=loc)
    money = partial(format_money, locale=loc)
    totals = calculate(repair.cost, vat_rate)

    sections = [
        QuoteSection("header", title=t("shop"), lines=[t("title")]),
        QuoteSection("meta", rows=[
            (t("date"), format_date(repair.created_at, loc)),
            (t("quote_number"), repair.id),
        ]),
    ]

    client_rows = [(t("name"), repair.owner_name)]
    if repair.phone:
        client_rows.append((t("phone"), repair.phone))
    client_rows.append((t("vehicle"), repair.car))
    client_rows.append((t("engine_size"), repair.engine_size))
    sections.append(QuoteSection("client", title=t("client_info"), rows=client_rows))

    if repair.selected_services:
        sections.append(QuoteSection(
            "services",
            columns=(t("service"), t("price")),
            rows=[(s.name, money(s.price)) for s in repair.selected_services],
        ))
    else:
        sections.append(QuoteSection(
            "legacy_repairs",
            title=t("proposed_repairs"),
            lines=[line for line in repair.repairs.splitlines() if line.strip()],
        ))

    sections.append(QuoteSection("financial", title=t("financial_info"), rows=[
        (t("subtotal"), money(totals.subtotal)),
        (f"{t('vat')} ({_percent(vat_rate)})", money(totals.vat)),
        (t("total"), money(totals.total)),
    ]))

    if repair.additional_info.strip():
        sections.append(QuoteSection(
            "additional_info", title=t("additional_info"), lines=[repair.additional_info],
        ))

    sections.append(QuoteSection("terms", title=t("terms"), lines=[
        t("term_timeframe"),
        t("term_validity").format(days=validity_days),
    ]))
    sections.append(QuoteSection("closing", lines=[t("regards"), t("signature")]))

    return QuoteDocument(
        repair_id=repair.id,
        locale=loc,
        filename=quote_filename(repair.id, loc),
        totals=totals,
        sections=sections,
    )


def _percent(rate: float) -> str:
    pct = (Decimal(str(rate)) * 100).normalize()
    return f"{pct:f}%"


# ---------------------------------------------------------------------------
# PDF rendering
# ---------------------------------------------------------------------------

def resolve_font(font_path: str = "") -> str | None:
    """Return a usable TrueType font path, or None."""
    if font_path:
        if os.path.isfile(font_path):
            return font_path
        logger.warning("Configured quote font not found: %s", font_path)
        return None
    for candidate in _FONT_CANDIDATES:
        if os.path.isfile(candidate):
            return candidate
    return None


def _fpdf_installed() -> bool:
    try:
        import fpdf  # noqa: F401
    except ImportError:
        return False
    return True


def pdf_available(locale: str = "en", font_path: str = "") -> bool:
    """Whether a quote in ``locale`` can be rendered right now.

    English renders with the built-in Helvetica; Bulgarian needs a
    TrueType font with Cyrillic glyphs.
    """
    if not _fpdf_installed():
        return False
    if resolve_locale(locale) == "en":
        return True
    return resolve_font(font_path) is not None


def _latin1_safe(text: str) -> str:
    """Map typographic characters Helvetica lacks onto plain ones."""
    return (
        text.replace("\u2014", "-")
        .replace("\u2013", "-")
        .replace("‘", "'")
        .replace("’", "'")
        .replace("“", '"')
        .replace("”", '"')
        .replace("…", "...")
    )


def render_pdf(document: QuoteDocument, font_path: str = "") -> bytes:
    """Render ``document`` as PDF bytes.

    Raises:
        QuoteRenderError: fpdf2 is missing, no font can show the text,
                          or rendering failed.
    """
    try:
        from fpdf import FPDF
    except ImportError as e:
        logger.warning("fpdf2 not installed -- quote PDF unavailable")
        raise QuoteRenderError("PDF generation is not available") from e

    font = resolve_font(font_path)
    if font:
        family = "QuoteSans"
        clean = str
    else:
        family = "Helvetica"
        clean = _latin1_safe
        try:
            for s in document.sections:
                for text in (s.title, *s.lines, *(s.columns or ()), *(c for r in s.rows for c in r)):
                    clean(text).encode("latin-1")
        except UnicodeEncodeError as e:
            logger.warning("No Unicode font for %s quote %s", document.locale, document.repair_id)
            raise QuoteRenderError(
                f"No font available for '{document.locale}' quotes; set quote.font_path"
            ) from e

    try:
        pdf = FPDF()
        if font:
            pdf.add_font(family, "", font)
            pdf.add_font(family, "B", font)
        pdf.add_page()
        pdf.set_auto_page_break(auto=True, margin=15)

        for section in document.sections:
            _render_section(pdf, family, clean, section)

        data = bytes(pdf.output())
    except Exception as e:
        logger.error("Failed to render quote %s: %s", document.repair_id, e)
        raise QuoteRenderError(f"Failed to render quote: {e}") from e

    logger.info("Quote PDF rendered: %s (%d bytes)", document.filename, len(data))
    return data


def _render_section(pdf, family: str, clean, section: QuoteSection) -> None:
    if section.key == "header":
        pdf.set_font(family, "B", 22)
        pdf.cell(0, 10, clean(section.title), new_x="LMARGIN", new_y="NEXT", align="C")
        pdf.set_font(family, "", 13)
        for line in section.lines:
            pdf.cell(0, 7, clean(line), new_x="LMARGIN", new_y="NEXT", align="C")
        pdf.ln(6)
        return

    if section.key == "closing":
        pdf.ln(4)
        pdf.set_font(family, "", 10)
        for line in section.lines:
            pdf.cell(0, 5, clean(line), new_x="LMARGIN", new_y="NEXT")
        return

    if section.title:
        pdf.set_fill_color(240, 240, 240)
        pdf.set_font(family, "B", 11)
        pdf.cell(0, 7, f"  {clean(section.title)}", new_x="LMARGIN", new_y="NEXT", fill=True)
        pdf.ln(2)

    if section.columns:
        pdf.set_font(family, "B", 10)
        pdf.cell(140, 6, f"  {clean(section.columns[0])}", border="B", new_x="RIGHT")
        pdf.cell(0, 6, clean(section.columns[1]), border="B", align="R",
                 new_x="LMARGIN", new_y="NEXT")
        pdf.set_font(family, "", 10)
        for name, price in section.rows:
            pdf.cell(140, 6, f"  {clean(name)}", new_x="RIGHT")
            pdf.cell(0, 6, clean(price), align="R", new_x="LMARGIN", new_y="NEXT")
    else:
        pdf.set_font(family, "", 10)
        for key, value in section.rows:
            pdf.cell(60, 5, f"  {clean(key)}:", new_x="RIGHT")
            pdf.cell(0, 5, clean(value), new_x="LMARGIN", new_y="NEXT")

    pdf.set_font(family, "", 10)
    for line in section.lines:
        pdf.multi_cell(0, 5, f"  {clean(line)}", new_x="LMARGIN", new_y="NEXT")
    pdf.ln(4)
