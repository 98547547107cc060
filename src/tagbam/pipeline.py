import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import pysam
import tqdm

from .utils import bam_utils
from .utils.bq_utils import PerfectQualitySource
from .utils.cli_utils import format_obnoxious_warning_message, get_field_count_and_percent_string
from .utils.errors import TagBamError, TagBamIOError

logger = logging.getLogger(__name__)


@dataclass
class TagCounts:
    total: int = 0
    tagged: int = 0
    skipped: int = 0


def tag_bam(
    input_bam,
    output_bam=None,
    in_place=False,
    skip_unparseable=False,
    quality_source=None,
    threads=1,
    disable_pbar=None,
):
    """Add CB/CY/UB/UY tags parsed from read names to every read of a BAM file.

    Reads are written to output_bam, or, if in_place is set, to a temp file next to the input
    that replaces the input once every read has been written.  Returns the TagCounts of the run.
    """

    t_start = time.time()

    input_bam = Path(input_bam)
    out_path = bam_utils.resolve_output_path(input_bam, output_bam, in_place)

    if quality_source is None:
        quality_source = PerfectQualitySource()
    if disable_pbar is None:
        disable_pbar = not sys.stdin.isatty()

    try:
        counts = _tag_reads(input_bam, out_path, skip_unparseable, quality_source, threads, disable_pbar)
    except BaseException:
        # The input is untouched until the final rename, so all we need to clean up is our temp file:
        if in_place and out_path.exists():
            logger.debug(f"Removing incomplete temp file: {out_path}")
            out_path.unlink()
        raise

    if in_place:
        try:
            os.replace(out_path, input_bam)
        except OSError as e:
            raise TagBamIOError(
                f"Failed to replace {input_bam} with its tagged version.  "
                f"Tagged reads were left in: {out_path}"
            ) from e

        logger.info(
            f"In-place tagging complete: {counts.total} reads processed, "
            f"{counts.tagged} tagged, {counts.skipped} skipped"
        )
    else:
        logger.info(f"Processed {counts.total} reads: {counts.tagged} tagged, {counts.skipped} skipped")

    count_str, pct_str = get_field_count_and_percent_string(counts.tagged, counts.total)
    et = time.time()
    logger.info(
        f"Done. Elapsed time: {et - t_start:2.2f}s.  Reads tagged: {count_str} {pct_str}."
    )

    if counts.total > 0 and counts.tagged == 0:
        logger.warning(
            format_obnoxious_warning_message(
                "No reads were tagged.  Check that the reads have not been tagged already "
                "and that their names have the form {uuid}_{i7}-{i5}-{CBC}_{UMI}."
            )
        )

    return counts


def _tag_reads(input_bam, out_path, skip_unparseable, quality_source, threads, disable_pbar):
    counts = TagCounts()

    pysam.set_verbosity(0)  # silence message about the .bai file not being found
    try:
        bam_file = pysam.AlignmentFile(
            str(input_bam), "rb", check_sq=False, require_index=False, threads=threads
        )
    except (OSError, ValueError) as e:
        raise TagBamIOError(f"Failed to open input BAM: {input_bam}") from e

    with bam_file:
        try:
            # The template gives the output an identical header:
            out_bam_file = pysam.AlignmentFile(str(out_path), "wb", template=bam_file, threads=threads)
        except (OSError, ValueError) as e:
            raise TagBamIOError(f"Failed to create output BAM: {out_path}") from e

        try:
            with out_bam_file, tqdm.tqdm(
                desc="Progress",
                unit=" read",
                colour="green",
                file=sys.stderr,
                leave=False,
                disable=disable_pbar,
            ) as pbar:
                try:
                    for read in bam_file:
                        counts.total += 1
                        _tag_one_read(read, quality_source, skip_unparseable, counts)

                        try:
                            out_bam_file.write(read)
                        except (OSError, ValueError) as e:
                            raise TagBamIOError(
                                f"Failed to write read '{read.query_name}' to output BAM: {out_path}"
                            ) from e

                        pbar.update(1)
                except OSError as e:
                    raise TagBamIOError(
                        f"Failed to read record {counts.total + 1} from input BAM: {input_bam}"
                    ) from e
        except OSError as e:
            # Only closing / flushing the output gets here, everything else is already wrapped:
            raise TagBamIOError(f"Failed to finish writing output BAM: {out_path}") from e

    return counts


def _tag_one_read(read, quality_source, skip_unparseable, counts):
    result = bam_utils.tag_read(read, quality_source)

    if result.status == bam_utils.TagStatus.TAGGED:
        counts.tagged += 1
    elif result.status == bam_utils.TagStatus.PRE_TAGGED:
        logger.warning(f"Read '{read.query_name}' already has CB/CY/UB/UY tags, skipping")
        counts.skipped += 1
    elif skip_unparseable:
        logger.warning(f"Skipping unparseable read name '{read.query_name}': {result.error}")
        counts.skipped += 1
    else:
        raise TagBamError(f"Failed to parse read name '{read.query_name}'") from result.error
