from datetime import date, datetime, timedelta

# Periodo coberto por parcela
PERIOD_DAYS = {"monthly": 30, "annual": 365}


def period_days(billing_period: str | None) -> int:
    return PERIOD_DAYS.get((billing_period or "monthly").lower(), 30)


def start_of_day(d: datetime) -> datetime:
    return d.replace(hour=0, minute=0, second=0, microsecond=0)


def days_between(start: datetime, end: datetime) -> int:
    """Dias inteiros (floor) entre dois instantes."""
    return int((end - start) // timedelta(days=1))


def format_date_br(value: date | datetime | None) -> str:
    if not value:
        return ""
    return value.strftime("%d/%m/%Y")
