import logging
import sys
from pathlib import Path

import click
import click_log

from .meta import VERSION
from .pipeline import tag_bam
from .utils import cli_utils
from .utils.bq_utils import BqMapQualitySource, PerfectQualitySource, load_bq_map_with_cache
from .utils.constants import DEFAULT_THREADS
from .utils.errors import TagBamConfigError, TagBamError

logger = logging.getLogger("tagbam")


@click.command(name="tagbam")
@click_log.simple_verbosity_option(logger, default="INFO")
@click.version_option(VERSION, prog_name="tagbam")
@click.option(
    "-i",
    "--input",
    "input_bam",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Input BAM file.",
)
@click.option(
    "-o",
    "--output",
    "output",
    cls=cli_utils.MutuallyExclusiveOption,
    mutually_exclusive=["in_place"],
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output BAM file (required unless --in-place is used).",
)
@click.option(
    "--in-place",
    "in_place",
    is_flag=True,
    default=False,
    cls=cli_utils.MutuallyExclusiveOption,
    mutually_exclusive=["output"],
    help="Modify the input BAM file in place.",
)
@click.option(
    "--skip-unparseable",
    is_flag=True,
    default=False,
    show_default=True,
    help="Skip reads with unparseable names instead of failing.",
)
@click.option(
    "--fastq-bq",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Optional FASTQ (plain, gzip, or bgzip) with a BQ token in each header giving "
    "barcode qualities.  The whole file is loaded into memory.",
)
@click.option(
    "--fastq-bq-cache",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Optional cache file for --fastq-bq.  Loaded if present, otherwise created.",
)
@click.option(
    "-t",
    "--threads",
    type=int,
    default=DEFAULT_THREADS,
    show_default=True,
    help="Number of threads for BAM and bgzip FASTQ (de)compression (0 for all).",
)
def main_entry(input_bam, output, in_place, skip_unparseable, fastq_bq, fastq_bq_cache, threads):
    """Re-tag BAM files by parsing cell barcodes and UMIs from read names.

    \b
    Parses read names of the form {uuid}_{i7}-{i5}-{CBC}_{UMI} and adds the tags:
      - CB:Z  cell barcode (i7 + i5 + CBC concatenated)
      - CY:Z  cell barcode quality (all 'I' for perfect quality, unless --fastq-bq is given)
      - UB:Z  UMI sequence
      - UY:Z  UMI quality (all 'I' for perfect quality, unless --fastq-bq is given)
    """

    cli_utils.create_logger()
    logger.info("Invoked via: tagbam %s", " ".join(sys.argv[1:]))

    if output is None and not in_place:
        raise click.UsageError("Either --output or --in-place must be specified")
    if fastq_bq_cache is not None and fastq_bq is None:
        raise click.UsageError("--fastq-bq-cache requires --fastq-bq")

    threads = cli_utils.sanitize_thread_count(threads)
    logger.debug(f"Running with {threads} I/O thread(s)")

    try:
        if fastq_bq is not None:
            quality_source = BqMapQualitySource(load_bq_map_with_cache(fastq_bq, fastq_bq_cache, threads))
        else:
            quality_source = PerfectQualitySource()

        tag_bam(
            input_bam,
            output_bam=output,
            in_place=in_place,
            skip_unparseable=skip_unparseable,
            quality_source=quality_source,
            threads=threads,
        )
    except TagBamConfigError as e:
        raise click.UsageError(str(e))
    except TagBamError as e:
        cli_utils.log_error_chain(logger, e)
        sys.exit(1)


if __name__ == "__main__":
    main_entry()  # pylint: disable=E1120
