from datetime import datetime, timezone


def now_ms() -> int:
    """Current UTC time as integer epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_date_string(moment: datetime) -> str:
    """Calendar day (YYYY-MM-DD) of the given moment in UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d")


def end_of_utc_day(moment: datetime) -> str:
    """Last second of the moment's UTC day, e.g. 2026-10-18T23:59:59Z."""
    return f"{utc_date_string(moment)}T23:59:59Z"


def end_of_utc_day_timestamp(moment: datetime) -> int:
    """Epoch seconds of the next UTC midnight (when the day's quota rolls over)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    day = moment.astimezone(timezone.utc).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return int(day.timestamp()) + 86400
