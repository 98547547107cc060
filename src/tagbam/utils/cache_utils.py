import logging
import os
from pathlib import Path

from construct import (
    Const,
    ConstError,
    ConstructError,
    GreedyBytes,
    If,
    Int8ul,
    Int64ul,
    Prefixed,
    StreamError,
    Struct,
    this,
)

from .constants import BQ_CACHE_MAGIC, TEMP_FILE_SUFFIX
from .errors import BqCacheFormatError
from .read_utils import BarcodeQualities

logger = logging.getLogger(__name__)

# Binary BQ map cache.  All integers are little-endian:
#
#   magic[8]       BQ_CACHE_MAGIC (format name + version)
#   entry_count    u64
#   entry_count x BQ_CACHE_ENTRY
#
# A change to this layout requires a new magic.
BQ_CACHE_HEADER = Struct(
    "magic" / Const(BQ_CACHE_MAGIC),
    "entry_count" / Int64ul,
)

BQ_CACHE_ENTRY = Struct(
    "name" / Prefixed(Int64ul, GreedyBytes),  # UTF-8 read name
    "cb" / Prefixed(Int64ul, GreedyBytes),
    "has_umi" / Int8ul,
    "umi" / If(this.has_umi == 1, Prefixed(Int64ul, GreedyBytes)),
)


def dump_bq_cache(bq_map, stream):
    """Encode the given BQ map (read name -> BarcodeQualities) into a binary stream."""

    BQ_CACHE_HEADER.build_stream(dict(entry_count=len(bq_map)), stream)

    for name, quals in bq_map.items():
        BQ_CACHE_ENTRY.build_stream(
            dict(
                name=name.encode("utf-8"),
                cb=bytes(quals.barcode_quality),
                has_umi=0 if quals.umi_quality is None else 1,
                umi=None if quals.umi_quality is None else bytes(quals.umi_quality),
            ),
            stream,
        )


def load_bq_cache(stream):
    """Decode a BQ map from a binary stream written by dump_bq_cache."""

    try:
        header = BQ_CACHE_HEADER.parse_stream(stream)
    except ConstError as e:
        raise BqCacheFormatError("BQ cache has invalid header") from e
    except StreamError as e:
        raise BqCacheFormatError("BQ cache is truncated: failed to read header") from e

    bq_map = dict()
    for i in range(header.entry_count):
        try:
            entry = BQ_CACHE_ENTRY.parse_stream(stream)
        except ConstructError as e:
            raise BqCacheFormatError(
                f"BQ cache is truncated: failed to read entry {i + 1} of {header.entry_count}"
            ) from e

        try:
            name = entry.name.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BqCacheFormatError(f"BQ cache contains non-UTF8 read name in entry {i + 1}") from e

        # Qualities are decoded lazily while tagging, so they are checked here:
        try:
            entry.cb.decode("utf-8")
            if entry.umi is not None:
                entry.umi.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BqCacheFormatError(f"BQ cache contains non-UTF8 qualities in entry {i + 1}") from e

        bq_map[name] = BarcodeQualities(entry.cb, entry.umi)

    if stream.read(1):
        raise BqCacheFormatError(
            f"BQ cache has data beyond the {header.entry_count} entries declared in its header"
        )

    return bq_map


def read_bq_cache(cache_path):
    """Load a BQ map from the cache file at the given path."""
    with open(cache_path, "rb") as f:
        bq_map = load_bq_cache(f)

    logger.info(f"Loaded {len(bq_map)} barcode quality entries from cache: {cache_path}")
    return bq_map


def write_bq_cache(cache_path, bq_map):
    """Write a BQ map to the cache file at the given path.

    The cache is written next to its final location and renamed into place once complete,
    so an interrupted write never leaves a truncated cache behind.
    """

    cache_path = Path(cache_path)
    tmp_path = cache_path.parent / f".{cache_path.name}{TEMP_FILE_SUFFIX}"

    try:
        with open(tmp_path, "wb") as f:
            dump_bq_cache(bq_map, f)
        os.replace(tmp_path, cache_path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

    logger.info(f"Wrote {len(bq_map)} barcode quality entries to cache: {cache_path}")
