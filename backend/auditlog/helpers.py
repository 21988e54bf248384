from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from typing import Any, Optional, Union

from dateutil import parser as dateutil_parser
from zoneinfo import ZoneInfo

_TRUE_WORDS = {"1", "true", "t", "yes", "y", "on"}
_FALSE_WORDS = {"0", "false", "f", "no", "n", "off", ""}


def _tz_from_name(name: Union[str, tzinfo, None]) -> tzinfo:
    if isinstance(name, tzinfo):
        return name
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except Exception:
        # Unknown zone names fall back to UTC
        return timezone.utc


def _ensure_aware(dt: datetime, default_tz: Union[str, tzinfo, None]) -> datetime:
    """Make a datetime timezone-aware (attach default_tz if naive)."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=_tz_from_name(default_tz))
    return dt


def _from_epoch_numeric(x: Union[int, float, Decimal]) -> datetime:
    """Interpret numeric epochs in seconds or milliseconds."""
    val = float(x)
    seconds = val / 1e3 if abs(val) >= 1e11 else val
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_timestamptz(value: Any, *, default_tz: Union[str, tzinfo, None] = "UTC") -> Optional[datetime]:
    """
    Coerce request input into a timezone-aware UTC datetime for Postgres.

    Accepted inputs:
      * datetime (aware or naive)  -> attach default_tz if naive
      * date                       -> midnight in default_tz
      * int/float/Decimal          -> Unix epoch (seconds or milliseconds)
      * str                        -> ISO 8601 (trailing 'Z' ok) or anything dateutil parses
      * None or ""                 -> None

    Raises ValueError when the value cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None

    if isinstance(value, bool):
        raise ValueError(f"Cannot interpret value as timestamptz: {value!r}")
    if isinstance(value, datetime):
        return _ensure_aware(value, default_tz).astimezone(timezone.utc)
    if isinstance(value, date):
        midnight = datetime(value.year, value.month, value.day)
        return _ensure_aware(midnight, default_tz).astimezone(timezone.utc)
    if isinstance(value, (int, float, Decimal)):
        return _from_epoch_numeric(value)

    if isinstance(value, str):
        s = value.strip()
        try:
            iso = s[:-1] + "+00:00" if s.endswith("Z") else s
            parsed = datetime.fromisoformat(iso)
        except ValueError:
            try:
                parsed = dateutil_parser.parse(s)
            except (ValueError, OverflowError) as exc:
                raise ValueError(f"Cannot interpret value as timestamptz: {value!r}") from exc
        return _ensure_aware(parsed, default_tz).astimezone(timezone.utc)

    raise ValueError(f"Cannot interpret value as timestamptz: {value!r}")


def to_bool(value: Any, default: bool = False) -> bool:
    """Loose boolean coercion for JSON bodies and query strings."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"Cannot interpret value as boolean: {value!r}")


def to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Strict integer coercion: accepts ints and integral strings, rejects bools and floats."""
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"Expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            return int(text, 10)
        except ValueError:
            raise ValueError(f"Expected an integer, got {value!r}") from None
    raise ValueError(f"Expected an integer, got {value!r}")


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as ISO 8601, using 'Z' for UTC."""
    if value is None:
        return None
    iso = value.isoformat()
    if iso.endswith("+00:00"):
        iso = iso[:-6] + "Z"
    return iso
