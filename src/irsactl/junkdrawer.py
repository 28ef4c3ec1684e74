from __future__ import annotations

import datetime
import re
import typing

if typing.TYPE_CHECKING:
    import collections.abc

DURATION_PART_REGEX = re.compile("([0-9]+(?:\\.[0-9]+)?)(h|m|s)")


def parse_duration(value: str) -> datetime.timedelta:
    """Parse a duration such as `25m`, `1h30m` or `90s` into a timedelta."""
    value = value.strip()
    if value.isdigit():
        return datetime.timedelta(seconds=int(value))

    if value == "" or DURATION_PART_REGEX.sub("", value) != "":
        msg = f"invalid duration {value!r}, expected e.g. '25m', '1h30m' or '90s'"
        raise ValueError(msg)

    units = {"h": "hours", "m": "minutes", "s": "seconds"}
    kwargs: dict[str, float] = {}
    for amount, unit in DURATION_PART_REGEX.findall(value):
        kwargs[units[unit]] = kwargs.get(units[unit], 0.0) + float(amount)

    return datetime.timedelta(**kwargs)


def parse_key_value_pairs(values: collections.abc.Iterable[str]) -> dict[str, str]:
    ret: dict[str, str] = {}
    for value in values:
        for pair in value.split(","):
            if pair.strip() == "":
                continue

            if "=" not in pair:
                msg = f"{pair!r} is not a key=value pair"
                raise ValueError(msg)

            key, val = pair.split("=", 1)
            if key.strip() == "":
                msg = f"{pair!r} has an empty key"
                raise ValueError(msg)

            ret[key.strip()] = val.strip()

    return ret


def split_csv(values: collections.abc.Iterable[str]) -> tuple[str, ...]:
    return tuple(v.strip() for value in values for v in value.split(",") if v.strip() != "")
