"""Settings for sls: a YAML config file plus discovered Strava client credentials."""
from __future__ import annotations

import dataclasses
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .client import STRAVA_API_BASE
from .credentials import STRAVA_TOKEN_URL
from .errors import AuthError, ConfigError
from .fetcher import DEFAULT_ACTIVITY_WORKERS, DEFAULT_GEAR_WORKERS, DEFAULT_PER_PAGE

CLIENT_VARS = {
    "client_id": "STRAVA_CLIENT_ID",
    "client_secret": "STRAVA_CLIENT_SECRET",
}
KEYCHAIN_SERVICES = ("sls", "strava-ls")


def sls_home() -> Path:
    return Path(os.environ.get("SLS_HOME", str(Path.home() / ".sls"))).expanduser()


@dataclass
class Settings:
    client_id: str
    client_secret: str
    token_path: Path
    activity_cache: Path
    gear_cache: Path
    athlete_id: int | None = None
    per_page: int = DEFAULT_PER_PAGE
    activity_workers: int = DEFAULT_ACTIVITY_WORKERS
    gear_workers: int = DEFAULT_GEAR_WORKERS
    request_timeout: float = 30.0
    max_retries: int = 0
    backoff_base: float = 15.0
    short_window_limit: int = 100
    daily_limit: int = 1000
    dedupe_on_merge: bool = False
    refresh: bool = False
    api_base: str = STRAVA_API_BASE
    token_url: str = STRAVA_TOKEN_URL


def is_readable_file(path: Path) -> bool:
    return path.exists() and path.is_file() and os.access(path, os.R_OK)


def parse_dotenv(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not is_readable_file(path):
        return values

    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export ") :].strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip()
                if not key:
                    continue
                if (value.startswith('"') and value.endswith('"')) or (
                    value.startswith("'") and value.endswith("'")
                ):
                    value = value[1:-1]
                values[key] = value
    except OSError:
        return {}
    return values


def discover_env_files() -> list[Path]:
    candidate_paths: list[Path] = []
    explicit_env_file = os.getenv("STRAVA_ENV_FILE")
    if explicit_env_file:
        candidate_paths.append(Path(explicit_env_file).expanduser())

    for path in (sls_home() / ".env", Path.cwd() / ".env"):
        if path not in candidate_paths:
            candidate_paths.append(path)
    return candidate_paths


def load_keychain_secret(var_name: str) -> str | None:
    # macOS keychain fallback for unattended runs.
    for service in KEYCHAIN_SERVICES:
        cmd = ["security", "find-generic-password", "-w", "-s", service, "-a", var_name]
        try:
            result = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=10,
            )
        except FileNotFoundError:
            return None
        except subprocess.TimeoutExpired:
            continue
        if result.returncode == 0:
            secret = result.stdout.strip()
            if secret:
                return secret
    return None


def resolve_client_credentials(
    configured: dict[str, Any] | None = None,
) -> tuple[dict[str, str], dict[str, str], list[Path]]:
    """Find the client id and secret: config file, environment, .env files, keychain."""
    values: dict[str, str] = {}
    sources: dict[str, str] = {}

    for key, var_name in CLIENT_VARS.items():
        config_value = (configured or {}).get(key)
        if config_value:
            values[key] = str(config_value)
            sources[key] = "config"
            continue
        env_value = os.getenv(var_name)
        if env_value:
            values[key] = env_value
            sources[key] = "environment"

    env_files = discover_env_files()
    for env_file in env_files:
        if all(key in values for key in CLIENT_VARS):
            break
        if not is_readable_file(env_file):
            continue
        env_values = parse_dotenv(env_file)
        for key, var_name in CLIENT_VARS.items():
            if key in values:
                continue
            env_value = env_values.get(var_name)
            if env_value:
                values[key] = env_value
                sources[key] = f"dotenv:{env_file}"

    for key, var_name in CLIENT_VARS.items():
        if key in values:
            continue
        keychain_value = load_keychain_secret(var_name)
        if keychain_value:
            values[key] = keychain_value
            sources[key] = "keychain"

    return values, sources, env_files


def format_missing_credentials_message(missing: list[str], searched_env_files: list[Path]) -> str:
    env_locations = ", ".join(shlex.quote(str(path)) for path in searched_env_files)
    missing_vars = ", ".join(CLIENT_VARS[key] for key in missing)
    return (
        f"Missing Strava client credentials: {missing_vars}\n"
        "Credential lookup order: config file -> environment variables -> .env files -> macOS keychain.\n"
        f"Searched .env paths: {env_locations}"
    )


def read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Couldn't read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Couldn't parse config {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return payload


def _coerce(name: str, value: Any, target: Any) -> Any:
    try:
        if target is Path:
            return Path(str(value)).expanduser()
        if target is bool:
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if target is int:
            return int(value)
        if target is float:
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc
    return value


_FIELD_TYPES: dict[str, Any] = {
    "token_path": Path,
    "activity_cache": Path,
    "gear_cache": Path,
    "athlete_id": int,
    "per_page": int,
    "activity_workers": int,
    "gear_workers": int,
    "request_timeout": float,
    "max_retries": int,
    "backoff_base": float,
    "short_window_limit": int,
    "daily_limit": int,
    "dedupe_on_merge": bool,
    "refresh": bool,
    "api_base": str,
    "token_url": str,
}


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """Read the YAML config; only an explicitly named file is required to exist."""
    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist")
        raw = read_config_file(path)
    else:
        path = sls_home() / "config.yaml"
        raw = read_config_file(path) if path.exists() else {}

    unknown = set(raw) - set(_FIELD_TYPES) - set(CLIENT_VARS)
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")
    return raw


def load_settings(config_path: Path | str | None = None, **overrides: Any) -> Settings:
    home = sls_home()
    raw = load_config(config_path)

    credentials, _, searched_env_files = resolve_client_credentials(raw)
    missing = [key for key in CLIENT_VARS if key not in credentials]
    if missing:
        raise AuthError(format_missing_credentials_message(missing, searched_env_files))

    values: dict[str, Any] = {
        "token_path": home / "token",
        "activity_cache": home / "activities.json",
        "gear_cache": home / "gear.json",
    }
    for name, value in {**raw, **overrides}.items():
        if name in CLIENT_VARS or value is None:
            continue
        if name not in _FIELD_TYPES:
            raise ConfigError(f"Unknown setting: {name}")
        values[name] = _coerce(name, value, _FIELD_TYPES[name])

    settings = Settings(**credentials, **values)
    for name in ("per_page", "activity_workers", "gear_workers"):
        if getattr(settings, name) < 1:
            raise ConfigError(f"{name} must be at least 1")
    return settings


def describe(settings: Settings) -> dict[str, Any]:
    """Settings with the client secret masked, for debug logging."""
    values = dataclasses.asdict(settings)
    values["client_secret"] = "***"
    return {key: str(value) if isinstance(value, Path) else value for key, value in values.items()}
