from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import duckdb

from .models import Snapshot


def write_ndjson(path: Path, payloads: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for payload in payloads:
            handle.write(json.dumps(payload, sort_keys=True))
            handle.write("\n")


def _sql_path(path: Path) -> str:
    return "'" + str(path).replace("'", "''") + "'"


def export_parquet(out_dir: Path, snapshot: Snapshot) -> list[Path]:
    """Write ndjson and parquet copies of the snapshot into ``out_dir``."""
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    activities_ndjson = out_dir / "activities.ndjson"
    write_ndjson(activities_ndjson, [activity.to_dict() for activity in snapshot.activities])
    written.append(activities_ndjson)

    gear_ndjson = out_dir / "gear.ndjson"
    write_ndjson(gear_ndjson, [gear.to_dict() for gear in snapshot.gear.values()])
    written.append(gear_ndjson)

    if not snapshot.activities:
        return written

    con = duckdb.connect()
    try:
        con.execute(
            f"CREATE OR REPLACE TABLE activities_raw AS SELECT * FROM read_json_auto({_sql_path(activities_ndjson)})"
        )
        con.execute(
            """
            CREATE OR REPLACE TABLE activities AS
            SELECT
                *,
                TRY_CAST(distance AS DOUBLE) / 1000.0 AS distance_km,
                TRY_CAST(moving_time AS DOUBLE) / 60.0 AS moving_time_min,
                CASE
                    WHEN TRY_CAST(moving_time AS DOUBLE) > 0
                    THEN (TRY_CAST(distance AS DOUBLE) / 1000.0) / (TRY_CAST(moving_time AS DOUBLE) / 3600.0)
                    ELSE NULL
                END AS average_speed_kph,
                CASE
                    WHEN TRY_CAST(distance AS DOUBLE) > 0
                    THEN TRY_CAST(total_elevation_gain AS DOUBLE) / (TRY_CAST(distance AS DOUBLE) / 1000.0)
                    ELSE NULL
                END AS elevation_gain_per_km
            FROM activities_raw
            """
        )
        activities_parquet = out_dir / "activities.parquet"
        con.execute(f"COPY activities TO {_sql_path(activities_parquet)} (FORMAT 'parquet')")
        written.append(activities_parquet)

        if snapshot.gear:
            con.execute(
                f"CREATE OR REPLACE TABLE gear AS SELECT * FROM read_json_auto({_sql_path(gear_ndjson)})"
            )
            gear_parquet = out_dir / "gear.parquet"
            con.execute(f"COPY gear TO {_sql_path(gear_parquet)} (FORMAT 'parquet')")
            written.append(gear_parquet)
    finally:
        con.close()
    return written
