from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

from .config import CLIENT_VARS, describe, load_config, load_settings, resolve_client_credentials
from .errors import SlsError
from .export import export_parquet
from .formatter import ActivityFormatter, detailed_activities, to_json
from .runner import build_cache, run, save_snapshot


def setup_logging(debug: bool = False) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level="DEBUG" if debug else "INFO",
        colorize=None,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sls", description="List Strava activities")
    parser.add_argument("-a", "--all", action="store_true", help="show all columns")
    parser.add_argument("-p", "--power", action="store_true", help="show power-related columns")
    parser.add_argument("-t", "--time", action="store_true", help="show moving time")
    parser.add_argument("-r", "--refresh", action="store_true", help="ignore and rebuild the cache")
    parser.add_argument("-j", "--json", action="store_true", help="JSON output")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: ~/.sls/config.yaml)")
    parser.add_argument("--workers", type=int, default=None, help="Parallel page fetches for a full fetch")
    parser.add_argument(
        "--dedupe",
        action="store_true",
        default=None,
        help="Replace cached activities that the API returns again instead of keeping both copies.",
    )
    parser.add_argument("--export-dir", default=None, help="Also write ndjson and parquet exports here.")
    parser.add_argument("--debug", action="store_true", help="Verbose logging to stderr.")
    parser.add_argument(
        "--check-credentials",
        action="store_true",
        help="Report where the Strava client credentials were found and exit without calling the API.",
    )
    return parser.parse_args(argv)


def check_credentials(config_path: str | None) -> None:
    credentials, sources, searched_env_files = resolve_client_credentials(load_config(config_path))
    missing = [CLIENT_VARS[key] for key in CLIENT_VARS if key not in credentials]
    if missing:
        searched = ", ".join(str(path) for path in searched_env_files)
        raise SystemExit(f"Missing Strava client credentials: {', '.join(missing)} (searched {searched})")
    print("Strava client credentials available:")
    for key, var_name in CLIENT_VARS.items():
        print(f"- {var_name}: {sources[key]}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.debug)

    try:
        if args.check_credentials:
            check_credentials(args.config)
            return

        settings = load_settings(
            args.config,
            refresh=args.refresh or None,
            activity_workers=args.workers,
            dedupe_on_merge=args.dedupe,
        )
        logger.debug(f"Settings: {describe(settings)}")
        snapshot = run(settings)
    except SlsError as exc:
        raise SystemExit(f"fatal error: {exc}") from exc

    rows = detailed_activities(snapshot)
    if args.json:
        print(to_json(rows))
    else:
        formatter = ActivityFormatter(power=args.power, time=args.time, all_columns=args.all)
        for line in formatter.format(rows):
            print(line)

    save_snapshot(build_cache(settings), snapshot)

    if args.export_dir:
        written = export_parquet(Path(args.export_dir).expanduser(), snapshot)
        logger.info(f"Exported {len(written)} files to {args.export_dir}")


if __name__ == "__main__":
    main()
