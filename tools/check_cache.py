#!/usr/bin/env python3
"""
Check the consistency of a local cache file (anchors.json or pending_uploads.json).

Validations:
* File shape: a JSON object whose "anchors" entry, when present, is a list.
* Coordinates: numeric, -90 <= lat <= 90, -180 <= lon <= 180.
* Geohash: present and equal to the encoding of the coordinates.
* Duplicate ids.
* Enum values: status and severity are known values (when set).
* Upvotes: non-negative integer.

Unlike the store itself this script never modifies or quarantines the file.
Each issue is printed as "<issue>\\t<id>". Exits non-zero if issues are found.

Usage:
    python tools/check_cache.py --file data/anchors.json
"""
import argparse
import json
import sys
from pathlib import Path
from typing import List, Tuple

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from pc.core.models import Severity, Status
from pc.domain.geohash import encode

STATUS_VALUES = {s.value for s in Status}
SEVERITY_VALUES = {s.value for s in Severity}


def check_entries(entries: list) -> List[Tuple[str, str]]:
    errors: List[Tuple[str, str]] = []
    seen_ids = set()
    for i, doc in enumerate(entries):
        if not isinstance(doc, dict):
            errors.append(("not_an_object", f"#{i}"))
            continue
        rid = str(doc.get("id") or f"#{i}")

        if rid in seen_ids:
            errors.append(("duplicate_id", rid))
        seen_ids.add(rid)

        lat = doc.get("latitude")
        lon = doc.get("longitude")
        if isinstance(lat, bool) or isinstance(lon, bool) or not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
            errors.append(("invalid_coordinates", rid))
        elif not (-90 <= lat <= 90 and -180 <= lon <= 180):
            errors.append(("out_of_bounds_coordinates", rid))
        else:
            gh = doc.get("geohash")
            if not gh:
                errors.append(("missing_geohash", rid))
            elif gh != encode(lat, lon):
                errors.append(("stale_geohash", rid))

        status = doc.get("status")
        if status and str(status).upper() not in STATUS_VALUES:
            errors.append(("unknown_status", rid))
        severity = doc.get("severity")
        if severity and str(severity).upper() not in SEVERITY_VALUES:
            errors.append(("unknown_severity", rid))

        upvotes = doc.get("upvotes", 0)
        if isinstance(upvotes, bool) or not isinstance(upvotes, int) or upvotes < 0:
            errors.append(("invalid_upvotes", rid))
    return errors


def check_file(path: Path) -> List[Tuple[str, str]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise SystemExit(f"File not found: {path}")
    except ValueError:
        return [("corrupt_file", path.name)]
    if not isinstance(data, dict):
        return [("bad_shape", path.name)]
    entries = data.get("anchors")
    if entries is None:
        return []
    if not isinstance(entries, list):
        return [("bad_shape", path.name)]
    return check_entries(entries)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Validate a local anchor cache file")
    parser.add_argument("--file", default="data/anchors.json")
    args = parser.parse_args(argv)
    errors = check_file(Path(args.file))
    if errors:
        for issue, rid in errors:
            print(f"{issue}\t{rid}")
        print(f"\nFound {len(errors)} issues")
        return 1
    print("No issues detected")
    return 0


if __name__ == "__main__":
    sys.exit(main())
