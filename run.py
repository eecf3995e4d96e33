"""CLI entrypoint."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

from dotenv import load_dotenv as _load_dotenv

from place_resolver import config
from place_resolver.errors import PickupPointNotFoundError, ResolverError
from place_resolver.http import RequestMetrics
from place_resolver.resolver import LocationResolver
from place_resolver.store import LocalStore


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def _parse_point(value: str) -> Tuple[float, float]:
    try:
        lat_s, lon_s = value.split(",", 1)
        return float(lat_s), float(lon_s)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected LAT,LON, got {value!r}") from exc


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve, rank and validate places")
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite place store path (default: PLACE_RESOLVER_DB or places.db)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Optional resolver_config.json path (default: repo root)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_search = sub.add_parser("search", help="Resolve free text into ranked places")
    p_search.add_argument("query", type=str)
    p_search.add_argument("--near", type=_parse_point, default=None, help="User location as LAT,LON")
    p_search.add_argument("--user", type=str, default=None, help="User id for personalization")
    p_search.add_argument(
        "--limit",
        type=int,
        default=config.DEFAULT_RESULT_LIMIT,
        help=f"Maximum results (default: {config.DEFAULT_RESULT_LIMIT})",
    )

    p_reverse = sub.add_parser("reverse", help="Resolve a coordinate into a place")
    p_reverse.add_argument("lat", type=float)
    p_reverse.add_argument("lon", type=float)

    p_validate = sub.add_parser("validate", help="Snap a coordinate to the nearest road")
    p_validate.add_argument("lat", type=float)
    p_validate.add_argument("lon", type=float)
    p_validate.add_argument("--category", type=str, default=None, help="Place category, e.g. school, mall")

    p_pickups = sub.add_parser("pickups", help="List pickup points for a place")
    p_pickups.add_argument("location_id", type=str)
    p_pickups.add_argument("--near", type=_parse_point, default=None, help="User location as LAT,LON")
    p_pickups.add_argument("--limit", type=int, default=config.PICKUP_DEFAULT_LIMIT)
    p_pickups.add_argument("--confirm", type=str, default=None, help="Confirm a pickup point id first")

    p_suggest = sub.add_parser("suggest", help="Personalized suggestions for a user")
    p_suggest.add_argument("user", type=str)
    p_suggest.add_argument("--near", type=_parse_point, default=None, help="Current location as LAT,LON")
    p_suggest.add_argument("--limit", type=int, default=5)

    return parser.parse_args(argv)


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def dispatch(args: argparse.Namespace, resolver: LocationResolver) -> Any:
    if args.command == "search":
        ranked = resolver.resolve_by_text(args.query, user_location=args.near, user_id=args.user, limit=args.limit)
        return [r.to_dict() for r in ranked]
    if args.command == "reverse":
        return resolver.resolve_by_coordinate(args.lat, args.lon).to_dict()
    if args.command == "validate":
        return resolver.validate_coordinate(args.lat, args.lon, args.category).to_dict()
    if args.command == "pickups":
        if args.confirm:
            resolver.confirm_pickup_point(args.confirm)
        points = resolver.get_pickup_points(args.location_id, user_location=args.near, limit=args.limit)
        return [p.to_dict() for p in points]
    if args.command == "suggest":
        suggestions = resolver.suggestions(args.user, current_location=args.near, limit=args.limit)
        return [s.to_dict() for s in suggestions]
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    config.load_resolver_config(args.config)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    db_path = args.db or os.environ.get("PLACE_RESOLVER_DB") or config.CACHE_DB_PATH
    metrics = RequestMetrics()
    try:
        store = LocalStore(db_path)
    except ResolverError as exc:
        print(f"Store error: {exc}", file=sys.stderr)
        return 1

    try:
        resolver = LocationResolver(store, metrics=metrics)
        _emit(dispatch(args, resolver))
    except ValueError as exc:
        print(f"Invalid input: {exc}", file=sys.stderr)
        return 2
    except PickupPointNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except ResolverError as exc:
        print(f"Resolution error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()

    logging.getLogger(__name__).debug("Request metrics: %s", metrics.snapshot())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
