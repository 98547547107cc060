import pysam
import pytest

from ..utils import TEST_BAM_HEADER


@pytest.fixture
def bam_header():
    return pysam.AlignmentHeader.from_dict(TEST_BAM_HEADER)


@pytest.fixture
def make_read(bam_header):
    """Factory for a 4bp aligned read with the given name and (tag, value) pairs."""

    def _make_read(name, tags=()):
        r = pysam.AlignedSegment(bam_header)
        r.query_name = name
        r.query_sequence = "ACGT"
        r.query_qualities = pysam.qualitystring_to_array("IIII")
        r.reference_id = 0
        r.reference_start = 10
        r.cigarstring = "4M"
        for tag, value in tags:
            r.set_tag(tag, value)
        return r

    return _make_read
