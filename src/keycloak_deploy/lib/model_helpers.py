import re
from datetime import timedelta
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


class DeploySettings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=False, extra="ignore", populate_by_name=True
    )


def parse_simple_duration_string(dur: str) -> re.Match[Any] | None:
    return re.match(r"^([1-9]\d*)(s|m|h|d)$", dur)


def duration_to_timedelta(dur: str) -> timedelta:
    """Convert a cfssl style duration (e.g. `87600h`, `365d`) into a timedelta.

    :param dur: The duration string, a positive integer followed by one of s, m, h, d.
    :type dur: str

    :raises ValueError: If the string is not a recognized duration.

    :returns: The equivalent timedelta.

    :rtype: timedelta
    """
    match = parse_simple_duration_string(dur.strip())
    if match is None:
        msg = f"Invalid duration {dur!r}, expected a value such as 8760h or 365d"
        raise ValueError(msg)
    amount, unit = match.groups()
    return timedelta(**{DURATION_UNITS[unit]: int(amount)})
