from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

EXPIRY_MARGIN_SECONDS = 5 * 60


@dataclass(frozen=True)
class Token:
    access_token: str
    expires_at: int
    refresh_token: str

    @classmethod
    def from_dict(cls, payload: Any) -> Token:
        if not isinstance(payload, dict):
            raise ValueError("token payload is not a JSON object")
        try:
            return cls(
                access_token=str(payload["access_token"]),
                expires_at=int(payload["expires_at"]),
                refresh_token=str(payload["refresh_token"]),
            )
        except KeyError as exc:
            raise ValueError(f"token payload is missing {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise ValueError(f"token payload is malformed: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "expires_at": self.expires_at,
            "refresh_token": self.refresh_token,
        }

    def is_expired(self, now: float | None = None, margin: int = EXPIRY_MARGIN_SECONDS) -> bool:
        if now is None:
            now = time.time()
        return now + margin > self.expires_at


def parse_start_date(value: Any) -> dt.datetime:
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid start_date: {value!r}")
    parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def format_start_date(value: dt.datetime) -> str:
    return value.astimezone(dt.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _float(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


@dataclass(frozen=True)
class Activity:
    """A summary activity, keyed by ``id`` and ordered by ``start_date``."""

    id: int
    start_date: dt.datetime
    name: str = ""
    type: str = ""
    start_date_local: str = ""
    gear_id: str | None = None
    external_id: str | None = None
    distance: float = 0.0
    moving_time: int = 0
    total_elevation_gain: float = 0.0
    kilojoules: float = 0.0
    average_watts: float = 0.0
    device_watts: bool = False

    @property
    def timestamp(self) -> int:
        return int(self.start_date.timestamp())

    @classmethod
    def from_dict(cls, payload: Any) -> Activity:
        if not isinstance(payload, dict):
            raise ValueError("activity payload is not a JSON object")
        activity_id = payload.get("id")
        if isinstance(activity_id, bool) or not isinstance(activity_id, int):
            raise ValueError(f"activity has invalid id: {activity_id!r}")
        start_date = parse_start_date(payload.get("start_date"))
        return cls(
            id=activity_id,
            start_date=start_date,
            name=payload.get("name") or "",
            type=payload.get("sport_type") or payload.get("type") or "",
            start_date_local=payload.get("start_date_local") or format_start_date(start_date),
            gear_id=payload.get("gear_id") or None,
            external_id=payload.get("external_id") or None,
            distance=_float(payload.get("distance")),
            moving_time=int(payload.get("moving_time") or 0),
            total_elevation_gain=_float(payload.get("total_elevation_gain")),
            kilojoules=_float(payload.get("kilojoules")),
            average_watts=_float(payload.get("average_watts")),
            device_watts=bool(payload.get("device_watts")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "start_date": format_start_date(self.start_date),
            "start_date_local": self.start_date_local,
            "gear_id": self.gear_id,
            "external_id": self.external_id,
            "distance": self.distance,
            "moving_time": self.moving_time,
            "total_elevation_gain": self.total_elevation_gain,
            "kilojoules": self.kilojoules,
            "average_watts": self.average_watts,
            "device_watts": self.device_watts,
        }


@dataclass(frozen=True)
class Gear:
    id: str
    name: str = ""
    distance: float | None = None
    retired: bool = False

    @classmethod
    def from_dict(cls, payload: Any) -> Gear:
        if not isinstance(payload, dict):
            raise ValueError("gear payload is not a JSON object")
        gear_id = payload.get("id")
        if not isinstance(gear_id, str) or not gear_id:
            raise ValueError(f"gear has invalid id: {gear_id!r}")
        distance = payload.get("distance")
        return cls(
            id=gear_id,
            name=payload.get("name") or "",
            distance=float(distance) if distance is not None else None,
            retired=bool(payload.get("retired")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "distance": self.distance,
            "retired": self.retired,
        }


def sort_activities(activities: Iterable[Activity]) -> list[Activity]:
    return sorted(activities, key=lambda activity: activity.start_date)


def gear_ids(activities: Iterable[Activity]) -> set[str]:
    return {activity.gear_id for activity in activities if activity.gear_id}


@dataclass
class Snapshot:
    activities: list[Activity] = field(default_factory=list)
    gear: dict[str, Gear] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> Snapshot:
        return cls()
