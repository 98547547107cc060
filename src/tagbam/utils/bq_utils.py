import logging
import os
import sys

from tqdm import tqdm

from .cache_utils import read_bq_cache, write_bq_cache
from .constants import (
    BQ_CBC_LABEL,
    BQ_FIELD_DELIMITER,
    BQ_I5_LABEL,
    BQ_I7_LABEL,
    BQ_LABEL_DELIMITER,
    BQ_TOKEN_MARKER,
    BQ_UMI_LABEL,
)
from .errors import BqCacheFormatError, BqLoadError
from .fastq_utils import get_read_name, iter_fastq_headers, open_fastq
from .read_utils import BarcodeQualities, perfect_quality

logger = logging.getLogger(__name__)

BQ_LABELS = {BQ_I7_LABEL, BQ_I5_LABEL, BQ_CBC_LABEL, BQ_UMI_LABEL}


def parse_bq_token(header):
    """Parse the BQ token from a FASTQ header.

    The token looks like `|BQ:i7:<qual>;i5:<qual>;CBC:<qual>[;UMI:<qual>]` and ends at the
    next whitespace.  Returns BarcodeQualities with the i7, i5 and CBC qualities concatenated
    (in that order), or None if the header has no token or the token lacks any of i7, i5, CBC.
    Unknown labels and fields without a label are ignored.
    """

    bq_start = header.find(BQ_TOKEN_MARKER)
    if bq_start == -1:
        return None

    token = header[bq_start + len(BQ_TOKEN_MARKER):]
    fields = token.split(maxsplit=1)
    token = fields[0] if fields else token

    quals = dict()
    for part in token.split(BQ_FIELD_DELIMITER):
        label, sep, qual = part.partition(BQ_LABEL_DELIMITER)
        if sep and label in BQ_LABELS:
            quals[label] = qual

    if not all(label in quals for label in (BQ_I7_LABEL, BQ_I5_LABEL, BQ_CBC_LABEL)):
        return None

    cb = quals[BQ_I7_LABEL] + quals[BQ_I5_LABEL] + quals[BQ_CBC_LABEL]
    umi = quals.get(BQ_UMI_LABEL)

    return BarcodeQualities(cb.encode("utf-8"), None if umi is None else umi.encode("utf-8"))


class PerfectQualitySource:
    """Quality source that gives every barcode and UMI base perfect quality."""

    def qualities(self, read_name, barcode, umi):
        """Return the (barcode quality, UMI quality) strings for the given read."""
        return perfect_quality(len(barcode)), perfect_quality(len(umi))


class BqMapQualitySource(PerfectQualitySource):
    """Quality source backed by a BQ map loaded from a FASTQ or its cache.

    Reads missing from the map, and UMIs without a UMI quality, get perfect quality.
    The map is never modified after construction.
    """

    def __init__(self, bq_map):
        self.bq_map = bq_map

    def qualities(self, read_name, barcode, umi):
        quals = self.bq_map.get(read_name)
        if quals is None:
            return super().qualities(read_name, barcode, umi)

        if quals.umi_quality is None:
            umi_quality = perfect_quality(len(umi))
        else:
            umi_quality = quals.umi_quality.decode("utf-8")

        return quals.barcode_quality.decode("utf-8"), umi_quality


def load_bq_map(fastq_path, threads=1, disable_pbar=None):
    """Read a FASTQ file into a map of read name -> BarcodeQualities.

    Only records whose header carries a complete BQ token are kept.
    """

    if disable_pbar is None:
        disable_pbar = not sys.stdin.isatty()

    bq_map = dict()
    num_headers = 0
    with open_fastq(fastq_path, threads) as fh:
        for header in tqdm(
            iter_fastq_headers(fh),
            desc="Loading barcode qualities",
            unit=" read",
            colour="green",
            file=sys.stderr,
            leave=False,
            disable=disable_pbar,
        ):
            num_headers += 1

            quals = parse_bq_token(header)
            if quals is not None:
                bq_map[get_read_name(header)] = quals

    logger.info(
        f"Loaded barcode qualities for {len(bq_map)} of {num_headers} FASTQ records from {fastq_path}"
    )

    return bq_map


def _warn_if_cache_is_stale(fastq_path, cache_path):
    if fastq_path is not None and os.path.exists(fastq_path):
        if os.path.getmtime(fastq_path) > os.path.getmtime(cache_path):
            logger.warning(
                f"BQ cache {cache_path} is older than {fastq_path}.  Using it anyway - "
                "delete the cache to rebuild it from the FASTQ."
            )


def load_bq_map_with_cache(fastq_path, cache_path=None, threads=1):
    """Load a BQ map from the cache if it exists, otherwise from the FASTQ.

    When a cache path is given but no cache exists yet, the map parsed from the FASTQ is
    written to it so that later runs can skip parsing.  An existing cache is always used as is:
    it is not checked against the FASTQ, and a corrupt cache is an error rather than a reason
    to fall back to the FASTQ.
    """

    if cache_path is not None and os.path.exists(cache_path):
        logger.info(f"Loading barcode qualities from cache: {cache_path}")
        _warn_if_cache_is_stale(fastq_path, cache_path)

        try:
            return read_bq_cache(cache_path)
        except BqCacheFormatError as e:
            raise BqCacheFormatError(f"Failed to read BQ cache: {cache_path}") from e
        except OSError as e:
            raise BqLoadError(f"Failed to read BQ cache: {cache_path}") from e

    logger.info(f"Loading barcode qualities from FASTQ: {fastq_path}")
    try:
        bq_map = load_bq_map(fastq_path, threads)
    except (OSError, EOFError, ValueError) as e:
        raise BqLoadError(f"Failed to read FASTQ: {fastq_path}") from e

    if cache_path is not None:
        try:
            write_bq_cache(cache_path, bq_map)
        except OSError as e:
            raise BqLoadError(f"Failed to write BQ cache: {cache_path}") from e

    return bq_map
