import collections
import enum
import logging
from pathlib import Path

from .constants import (
    CELL_BARCODE_QUAL_TAG,
    CELL_BARCODE_TAG,
    TAGBAM_TAGS,
    TEMP_FILE_SUFFIX,
    UMI_QUAL_TAG,
    UMI_TAG,
)
from .errors import ReadNameDecodeError, TagBamConfigError
from .read_utils import parse_read_name

logger = logging.getLogger(__name__)


class TagStatus(enum.Enum):
    TAGGED = enum.auto()
    PRE_TAGGED = enum.auto()
    UNDECODABLE = enum.auto()


# Outcome of tagging one read.  error is the ReadNameDecodeError for UNDECODABLE reads, None otherwise.
TagResult = collections.namedtuple("TagResult", ["status", "error"], defaults=[None])


def has_tagbam_tags(read):
    """True if the read already has any of the CB, CY, UB, or UY tags."""
    return any(read.has_tag(tag) for tag in TAGBAM_TAGS)


def tag_read(read, quality_source):
    """Add cell barcode and UMI tags parsed from the read name to the given pysam.AlignedSegment.

    Reads that already carry any of our tags are left untouched (PRE_TAGGED), as are reads whose
    names cannot be parsed (UNDECODABLE).  Whether an UNDECODABLE read is fatal is up to the caller.
    """

    if has_tagbam_tags(read):
        return TagResult(TagStatus.PRE_TAGGED)

    try:
        components = parse_read_name(read.query_name)
    except ReadNameDecodeError as e:
        return TagResult(TagStatus.UNDECODABLE, e)

    barcode = components.barcode
    barcode_qual, umi_qual = quality_source.qualities(read.query_name, barcode, components.umi)

    read.set_tag(CELL_BARCODE_TAG, barcode, value_type="Z")
    read.set_tag(CELL_BARCODE_QUAL_TAG, barcode_qual, value_type="Z")
    read.set_tag(UMI_TAG, components.umi, value_type="Z")
    read.set_tag(UMI_QUAL_TAG, umi_qual, value_type="Z")

    return TagResult(TagStatus.TAGGED)


def get_in_place_temp_path(input_bam):
    """Hidden temp file next to the input, so the final rename stays on one filesystem."""
    input_bam = Path(input_bam)
    return input_bam.parent / f".{input_bam.name}{TEMP_FILE_SUFFIX}"


def resolve_output_path(input_bam, output_bam=None, in_place=False):
    """Determine where tagged reads are written.

    Exactly one of output_bam and in_place must be given.  In place, reads are written to a
    temp file that later replaces the input.
    """

    if output_bam is None and not in_place:
        raise TagBamConfigError("Either --output or --in-place must be specified")
    if output_bam is not None and in_place:
        raise TagBamConfigError("--output and --in-place are mutually exclusive")

    if in_place:
        return get_in_place_temp_path(input_bam)

    output_bam = Path(output_bam)
    if output_bam.exists() and output_bam.resolve() == Path(input_bam).resolve():
        raise TagBamConfigError(
            f"Output BAM is the same file as the input BAM: {output_bam}.  Use --in-place instead."
        )

    return output_bam
