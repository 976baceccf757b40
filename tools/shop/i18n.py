"""
Locale helpers for the two shop languages (English, Bulgarian).

Only the strings the shop itself produces live here: quote document
labels and PDF filenames. Status labels are in tools.shop.workflow.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from tools.shop.records import Timestamp

SUPPORTED_LOCALES = ("en", "bg")
DEFAULT_LOCALE = "en"

QUOTE_LABELS: dict[str, dict[str, str]] = {
    "en": {
        "shop": "Auto Service",
        "title": "Repair Quote",
        "date": "Date",
        "quote_number": "Quote Number",
        "client_info": "Client Information",
        "name": "Name",
        "phone": "Phone",
        "vehicle": "Vehicle",
        "engine_size": "Engine Size",
        "service": "Service",
        "price": "Price",
        "proposed_repairs": "Proposed Repair Services",
        "financial_info": "Financial Information",
        "subtotal": "Total Amount",
        "vat": "VAT",
        "total": "Final Amount",
        "additional_info": "Additional Information",
        "terms": "Terms and Conditions",
        "term_timeframe": "1. The repair timeframe is approximate and may change "
                          "depending on parts availability.",
        "term_validity": "2. The quote is valid for {days} days from the date of issue.",
        "regards": "Best regards,",
        "signature": "The Auto Service Team",
        "currency": "BGN",
        "unknown_date": "Unknown date",
        "filename": "repair_quote_{id}.pdf",
    },
    "bg": {
        "shop": "Автосервиз",
        "title": "Оферта за ремонт",
        "date": "Дата",
        "quote_number": "Номер на оферта",
        "client_info": "Информация за клиента",
        "name": "Име",
        "phone": "Телефон",
        "vehicle": "Автомобил",
        "engine_size": "Обем на двигателя",
        "service": "Услуга",
        "price": "Цена",
        "proposed_repairs": "Предложени ремонтни дейности",
        "financial_info": "Финансова информация",
        "subtotal": "Обща сума",
        "vat": "ДДС",
        "total": "Крайна сума",
        "additional_info": "Допълнителна информация",
        "terms": "Общи условия",
        "term_timeframe": "1. Срокът за ремонт е приблизителен и може да се промени "
                          "в зависимост от наличността на части.",
        "term_validity": "2. Офертата е валидна {days} дни от датата на издаване.",
        "regards": "С уважение,",
        "signature": "Екипът на Автосервиз",
        "currency": "лв.",
        "unknown_date": "Неизвестна дата",
        "filename": "оферта_ремонт_{id}.pdf",
    },
}


# Notices shown next to matcher results that are not a confident match.
MATCH_NOTICES: dict[str, dict[str, str]] = {
    "en": {
        "heuristic": "These repairs might be yours. They were found by a loose text "
                     "search and need confirmation by the shop.",
        "none": "No repairs are linked to your account yet. Please contact the shop.",
        "diagnostic": "Most recent repairs in the system, shown for manual "
                      "reconciliation only. They are not this customer's repairs.",
    },
    "bg": {
        "heuristic": "Тези ремонти може да са ваши. Открити са чрез приблизително "
                     "търсене и трябва да бъдат потвърдени от сервиза.",
        "none": "Все още няма ремонти, свързани с вашия профил. Моля, свържете се със сервиза.",
        "diagnostic": "Последните ремонти в системата, показани само за ръчна "
                      "проверка. Това не са ремонтите на клиента.",
    },
}


def resolve_locale(lang: str | None, supported=SUPPORTED_LOCALES, default: str = DEFAULT_LOCALE) -> str:
    """Pick a supported locale, falling back to the default."""
    if lang:
        code = lang.strip().lower().split("-")[0]
        if code in supported:
            return code
    return default


def label(key: str, locale: str) -> str:
    table = QUOTE_LABELS.get(locale, QUOTE_LABELS[DEFAULT_LOCALE])
    return table[key]


def match_notice(confidence: str, locale: str) -> str:
    return MATCH_NOTICES.get(locale, MATCH_NOTICES[DEFAULT_LOCALE]).get(confidence, "")


def format_money(amount, locale: str) -> str:
    """45 → "45.00 BGN" (en) / "45,00 лв." (bg).

    Bulgarian groups thousands with a no-break space.
    """
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    whole, frac = f"{abs(value):.2f}".split(".")
    sign = "-" if value < 0 else ""
    if locale == "bg":
        grouped = f"{int(whole):,}".replace(",", "\u00a0")
        return f"{sign}{grouped},{frac} {label('currency', locale)}"
    return f"{sign}{int(whole):,}.{frac} {label('currency', locale)}"


def format_date(value, locale: str) -> str:
    """Short localized date: 3/5/2024 (en) / 5.03.2024 г. (bg)."""
    if isinstance(value, datetime):
        dt = value
    else:
        ts = Timestamp.from_value(value)
        if ts is None:
            return label("unknown_date", locale)
        dt = ts.to_datetime()
    if locale == "bg":
        return f"{dt.day}.{dt.month:02d}.{dt.year} г."
    return f"{dt.month}/{dt.day}/{dt.year}"
