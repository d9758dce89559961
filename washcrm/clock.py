"""
Shop-local time.

Reminder dates, follow-up dates and "today" for the work queues follow the
shop's calendar in config.TIMEZONE, the same zone the database sessions run
with. Naive datetimes are taken to be shop time already.
"""

from datetime import date, datetime, tzinfo

from dateutil import tz

from washcrm.config import config


def shop_tz() -> tzinfo:
    zone = tz.gettz(config.TIMEZONE)
    if zone is None:
        raise ValueError(f"Unknown TIMEZONE {config.TIMEZONE!r}")
    return zone


def shop_now() -> datetime:
    return datetime.now(shop_tz())


def shop_today() -> date:
    return shop_now().date()


def to_shop_time(moment: datetime) -> datetime:
    """Convert an aware datetime to shop time; naive ones pass through."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(shop_tz())
