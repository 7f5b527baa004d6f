"""getTime: current time, optionally formatted for an IANA timezone."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from voicelink.logging_config import get_logger

logger: Any = get_logger(__name__)

GET_TIME_DESCRIPTION = "Get the current time, optionally formatted for an IANA timezone."


class GetTimeParams(BaseModel):
    timezone: str | None = Field(
        default=None, description="IANA timezone, e.g. 'America/Los_Angeles'"
    )


def get_time(timezone: str | None = None, *, now: datetime | None = None) -> dict[str, str]:
    """Return `{iso}` plus `formatted` (MM/DD/YYYY, HH:MM:SS) when timezone resolves."""
    current = now or datetime.now(UTC)
    result = {"iso": current.isoformat(timespec="milliseconds").replace("+00:00", "Z")}
    if not timezone:
        return result

    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        logger.warning(f"getTime: unknown timezone {timezone!r} ({e})")
        return result

    result["formatted"] = current.astimezone(zone).strftime("%m/%d/%Y, %H:%M:%S")
    return result
