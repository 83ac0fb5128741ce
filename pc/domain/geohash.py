from typing import List, Tuple

from ..core.constants import GEOHASH_BASE32, GEOHASH_LENGTH, GEOHASH_HIGH_SENTINEL, NEIGHBOR_OFFSETS

def encode(lat: float, lon: float, precision: int = GEOHASH_LENGTH) -> str:
    """
    Encode a coordinate to a base-32 geohash.

    Bisects longitude and latitude alternately (longitude first). Each
    bisection emits one bit: 1 if the value lies strictly above the midpoint.
    Every 5 bits become one character of GEOHASH_BASE32.

    Returns a `precision`-char string (7 by default, ~150m cell), e.g. "u33dc0c".
    """
    lat_min, lat_max = -90.0, 90.0
    lon_min, lon_max = -180.0, 180.0
    even_bit = True
    idx = 0
    bit = 0
    out: List[str] = []

    while len(out) < precision:
        if even_bit:
            mid = (lon_min + lon_max) / 2
            if lon > mid:
                idx = (idx << 1) + 1
                lon_min = mid
            else:
                idx = idx << 1
                lon_max = mid
        else:
            mid = (lat_min + lat_max) / 2
            if lat > mid:
                idx = (idx << 1) + 1
                lat_min = mid
            else:
                idx = idx << 1
                lat_max = mid

        even_bit = not even_bit
        bit += 1
        if bit == 5:
            out.append(GEOHASH_BASE32[idx])
            bit = 0
            idx = 0

    return "".join(out)

def decode_bbox(geohash: str) -> Tuple[float, float, float, float]:
    """
    Inverse bisection.
    Returns (lat_min, lat_max, lon_min, lon_max) of the cell.
    Raises ValueError for characters outside the alphabet.
    """
    lat_min, lat_max = -90.0, 90.0
    lon_min, lon_max = -180.0, 180.0
    even_bit = True

    for ch in geohash:
        idx = GEOHASH_BASE32.find(ch)
        if idx < 0:
            raise ValueError(f"invalid geohash character {ch!r} in {geohash!r}")
        for shift in range(4, -1, -1):
            b = (idx >> shift) & 1
            if even_bit:
                mid = (lon_min + lon_max) / 2
                if b:
                    lon_min = mid
                else:
                    lon_max = mid
            else:
                mid = (lat_min + lat_max) / 2
                if b:
                    lat_min = mid
                else:
                    lat_max = mid
            even_bit = not even_bit

    return lat_min, lat_max, lon_min, lon_max

def decode(geohash: str) -> Tuple[float, float]:
    """Center (lat, lon) of the cell."""
    lat_min, lat_max, lon_min, lon_max = decode_bbox(geohash)
    return (lat_min + lat_max) / 2, (lon_min + lon_max) / 2

def neighbors(lat: float, lon: float, radius_km: int = 5) -> List[str]:
    """
    Candidate cells for a radius search: the center cell, then the cells
    under 8 fixed +/-0.1 degree offsets (N, S, E, W, NE, NW, SE, SW).

    `radius_km` does not change the offsets. The offset is angular, so the
    covered distance in meters shrinks toward the poles. Duplicates are
    dropped, order of first appearance kept (center first). At most 9 cells.
    """
    center = encode(lat, lon)
    cells = [center]
    for d_lat, d_lon in NEIGHBOR_OFFSETS:
        h = encode(lat + d_lat, lon + d_lon)
        if h not in cells:
            cells.append(h)
    return cells

def prefix_range(lat: float, lon: float, prefix_len: int) -> Tuple[str, str]:
    """[lo, hi) bounds for a range query over the encoded center's prefix."""
    prefix = encode(lat, lon)[:prefix_len]
    return prefix, prefix + GEOHASH_HIGH_SENTINEL
