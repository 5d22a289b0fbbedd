from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable

from .models import Activity, Gear, Snapshot

UNKNOWN_GEAR = Gear(id="", name="-")


@dataclass(frozen=True)
class DetailedActivity:
    activity: Activity
    gear: Gear

    def to_dict(self) -> dict:
        return {"activity": self.activity.to_dict(), "gear": self.gear.to_dict()}


def detailed_activities(snapshot: Snapshot) -> list[DetailedActivity]:
    return [
        DetailedActivity(activity, snapshot.gear.get(activity.gear_id or "", UNKNOWN_GEAR))
        for activity in snapshot.activities
    ]


def to_json(rows: list[DetailedActivity]) -> str:
    return json.dumps([row.to_dict() for row in rows])


def _power(value: float, activity: Activity) -> str:
    if activity.device_watts:
        return f"{value:4.0f}"
    return "-"


def _moving_time(activity: Activity) -> str:
    hours, remainder = divmod(activity.moving_time, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class Column:
    header: str
    format: Callable[[DetailedActivity], str]
    show: bool = True
    align_left: bool = False


class ActivityFormatter:
    def __init__(self, power: bool = False, time: bool = False, all_columns: bool = False) -> None:
        self.columns = [
            Column("#     Date", lambda row: row.activity.start_date_local[:10]),
            Column("ID", lambda row: str(row.activity.id)),
            Column("Type", lambda row: row.activity.type),
            Column("ExID", lambda row: row.activity.external_id or "-", show=all_columns),
            Column("Dist", lambda row: f"{row.activity.distance / 1000:4.1f}"),
            Column("Elev", lambda row: f"{row.activity.total_elevation_gain:4.0f}"),
            Column(
                "Work",
                lambda row: _power(row.activity.kilojoules, row.activity),
                show=all_columns or power,
            ),
            Column(
                "AP",
                lambda row: _power(row.activity.average_watts, row.activity),
                show=all_columns or power,
            ),
            Column("Time", lambda row: _moving_time(row.activity), show=all_columns or time),
            Column("Gear", lambda row: row.gear.name or "-", align_left=True),
            Column("Name", lambda row: row.activity.name, align_left=True),
        ]

    def format(self, rows: list[DetailedActivity]) -> list[str]:
        columns = [column for column in self.columns if column.show]
        lines = [[column.header for column in columns]]
        lines.extend([column.format(row) for column in columns] for row in rows)

        widths = [max(len(line[i]) for line in lines) for i in range(len(columns))]
        output = []
        for line in lines:
            cells = [
                value.ljust(width) if column.align_left else value.rjust(width)
                for column, value, width in zip(columns, line, widths)
            ]
            output.append("  ".join(cells).rstrip())
        return output
