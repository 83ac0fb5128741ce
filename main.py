#!/usr/bin/env python3
"""
Phantom Crowd core runner.

Files (working directory unless --config points elsewhere):
- config.json   remote_base_url, data_dir, log_dir, intervals, ...
- secrets.json  {"api_token": "..."} (NOT tracked)
- data/anchors.json, data/pending_uploads.json   local cache + upload queue
- data/impact_stats.json                         latest dashboard stats (serve)

Usage:
    python main.py serve
    python main.py nearby 52.52 13.405 --radius 500
    python main.py sync
    python main.py post 52.52 13.405 "Broken ramp at the north entrance" --use-case ACCESSIBILITY --category BROKEN_RAMP
"""
import argparse
import json
import sys

from pc.core.config import load_config
from pc.core.main_loop import build_services, run_loop
from pc.core.constants import DEFAULT_NEARBY_RADIUS_M
from pc.utils.log import log_line


def cmd_serve(cfg, args) -> int:
    run_loop(cfg)
    return 0


def cmd_nearby(cfg, args) -> int:
    services = build_services(cfg)
    try:
        if args.once:
            records = services.planner.fetch_nearby_once(args.lat, args.lon, args.radius).result(timeout=args.timeout)
        else:
            records = services.planner.query_nearby(args.lat, args.lon, args.radius)
    finally:
        services.close()
    for r in records:
        print(json.dumps(r.to_dict(), ensure_ascii=False))
    log_line(f"NEARBY | lat={args.lat} lon={args.lon} | radius={args.radius:g}m | found={len(records)}")
    return 0


def cmd_sync(cfg, args) -> int:
    services = build_services(cfg)
    try:
        ok, failed = services.planner.retry_pending()
    finally:
        services.close()
    print(f"uploaded={ok} still_pending={failed}")
    return 0 if failed == 0 else 1


def cmd_post(cfg, args) -> int:
    services = build_services(cfg)
    try:
        record, upload = services.planner.create_anchor(
            args.lat, args.lon, args.text,
            category=args.category,
            use_case=args.use_case,
            severity=args.severity,
            location_name=args.location_name,
        )
        uploaded = upload.result()
    finally:
        services.close()
    print(json.dumps({"id": record.id, "geohash": record.geohash, "uploaded": uploaded}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Phantom Crowd geospatial core")
    parser.add_argument("--config", default="config.json", help="path to config.json (secrets.json is read from the same directory)")
    parser.add_argument("--offline", action="store_true", help="use the in-process backend")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="run the live aggregator and log stats").set_defaults(func=cmd_serve)

    p = sub.add_parser("nearby", help="issues near a position")
    p.add_argument("lat", type=float)
    p.add_argument("lon", type=float)
    p.add_argument("--radius", type=float, default=DEFAULT_NEARBY_RADIUS_M, help="meters")
    p.add_argument("--once", action="store_true", help="one-shot union of issues and surface anchors")
    p.add_argument("--timeout", type=float, default=60.0)
    p.set_defaults(func=cmd_nearby)

    sub.add_parser("sync", help="retry pending uploads once").set_defaults(func=cmd_sync)

    p = sub.add_parser("post", help="create and upload a report")
    p.add_argument("lat", type=float)
    p.add_argument("lon", type=float)
    p.add_argument("text")
    p.add_argument("--use-case", default="")
    p.add_argument("--category", default="general")
    p.add_argument("--severity", default="MEDIUM")
    p.add_argument("--location-name", default="")
    p.set_defaults(func=cmd_post)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    if args.offline:
        cfg["offline"] = True
    return args.func(cfg, args)


if __name__ == "__main__":
    sys.exit(main())
