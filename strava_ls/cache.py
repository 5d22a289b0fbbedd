from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger

from .errors import CacheError
from .models import Activity, Gear, Snapshot, sort_activities


def read_json(path: Path) -> Any | None:
    """Return the decoded JSON at ``path``, or None when the file does not exist."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        raise CacheError(path, f"couldn't read: {exc}") from exc


def write_json_atomic(path: Path, payload: Any, mode: int | None = None) -> None:
    """Write ``payload`` next to ``path`` and rename it over the destination."""
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
        encoding="utf-8",
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            json.dump(payload, tmp, sort_keys=True)
            tmp.flush()
            os.fsync(tmp.fileno())
        except (OSError, TypeError, ValueError):
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        if mode is not None:
            tmp_path.chmod(mode)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class ActivityCache:
    """The on-disk activity list and gear map from the previous run."""

    def __init__(self, activity_path: Path, gear_path: Path) -> None:
        self.activity_path = Path(activity_path).expanduser()
        self.gear_path = Path(gear_path).expanduser()

    def load(self) -> Snapshot:
        return Snapshot(activities=self._load_activities(), gear=self._load_gear())

    def _load_activities(self) -> list[Activity]:
        payload = read_json(self.activity_path)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise CacheError(self.activity_path, "expected a JSON list of activities")
        try:
            activities = [Activity.from_dict(item) for item in payload]
        except (TypeError, ValueError) as exc:
            raise CacheError(self.activity_path, str(exc)) from exc
        return sort_activities(activities)

    def _load_gear(self) -> dict[str, Gear]:
        payload = read_json(self.gear_path)
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise CacheError(self.gear_path, "expected a JSON object keyed by gear id")
        try:
            return {gear_id: Gear.from_dict(item) for gear_id, item in payload.items()}
        except (TypeError, ValueError) as exc:
            raise CacheError(self.gear_path, str(exc)) from exc

    def save(self, snapshot: Snapshot) -> None:
        for path, payload in (
            (self.activity_path, [activity.to_dict() for activity in snapshot.activities]),
            (self.gear_path, {gear_id: gear.to_dict() for gear_id, gear in snapshot.gear.items()}),
        ):
            try:
                write_json_atomic(path, payload)
            except (OSError, TypeError, ValueError) as exc:
                raise CacheError(path, f"couldn't write: {exc}") from exc
            logger.debug(f"Wrote cache {path}")
