import gzip

import pysam


TEST_BAM_HEADER = {
    "HD": {"VN": "1.6", "SO": "unsorted"},
    "SQ": [{"SN": "chr1", "LN": 1000}],
}


def create_test_bam(bam_path, read_names, read_tags=None):
    """Write a minimal BAM with one 4bp read per name.

    read_tags optionally maps a read name to a list of (tag, value) pairs to set on that read.
    """

    read_tags = read_tags if read_tags else dict()

    header = pysam.AlignmentHeader.from_dict(TEST_BAM_HEADER)
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as out_bam_file:
        for i, read_name in enumerate(read_names):
            r = pysam.AlignedSegment(header)
            r.query_name = read_name
            r.query_sequence = "ACGT"
            r.query_qualities = pysam.qualitystring_to_array("IIII")
            r.flag = 0
            r.reference_id = 0
            r.reference_start = i % 900
            r.mapping_quality = 60
            r.cigarstring = "4M"

            for tag, value in read_tags.get(read_name, []):
                r.set_tag(tag, value, value_type="Z")

            out_bam_file.write(r)


def read_bam(bam_path):
    pysam.set_verbosity(0)
    with pysam.AlignmentFile(str(bam_path), "rb", check_sq=False, require_index=False) as bam_file:
        return list(bam_file)


def read_bam_header(bam_path):
    pysam.set_verbosity(0)
    with pysam.AlignmentFile(str(bam_path), "rb", check_sq=False, require_index=False) as bam_file:
        return bam_file.header.to_dict()


def get_tag_string(read, tag):
    return read.get_tag(tag) if read.has_tag(tag) else None


def write_fastq(fastq_path, records, compress=False):
    """Write (header, sequence) records as a 4-line FASTQ, gzip compressed if requested."""

    lines = []
    for header, seq in records:
        lines.append(f"{header}\n{seq}\n+\n{'I' * len(seq)}\n")

    opener = gzip.open if compress else open
    with opener(str(fastq_path), "wt") as f:
        f.write("".join(lines))


def write_bgzf_fastq(fastq_path, records, plain_path):
    """Write (header, sequence) records as a bgzip compressed FASTQ."""
    write_fastq(plain_path, records)
    pysam.tabix_compress(str(plain_path), str(fastq_path), force=True)


def assert_reads_are_equal(actual_read, expected_read):

    # Go through most fields until tags:
    assert actual_read.query_name == expected_read.query_name, f"Read {actual_read.query_name}: Read names not equal: {actual_read.query_name} != {expected_read.query_name}"
    assert actual_read.flag == expected_read.flag, f"Read {actual_read.query_name}: Read flags not equal"
    assert actual_read.reference_name == expected_read.reference_name, f"Read {actual_read.query_name}: Contig names not equal:  {actual_read.reference_name} != {expected_read.reference_name}"
    assert actual_read.reference_start == expected_read.reference_start, f"Read {actual_read.query_name}: Start position not equal:  {actual_read.reference_start} != {expected_read.reference_start}"
    assert actual_read.mapping_quality == expected_read.mapping_quality, f"Read {actual_read.query_name}: Mapping qualities not equal:  {actual_read.mapping_quality} != {expected_read.mapping_quality}"
    assert actual_read.cigarstring == expected_read.cigarstring, f"Read {actual_read.query_name}: CIGAR strings not equal:  {actual_read.cigarstring} != {expected_read.cigarstring}"
    assert actual_read.query_sequence == expected_read.query_sequence, f"Read {actual_read.query_name}: Base sequences not equal"
    assert actual_read.query_qualities == expected_read.query_qualities, f"Read {actual_read.query_name}: Base qualities not equal"


def assert_read_tags_are_equal(actual_read, expected_read):
    actual_tags = {tag: (val, tp) for tag, val, tp in actual_read.get_tags(with_value_type=True)}
    expected_tags = {tag: (val, tp) for tag, val, tp in expected_read.get_tags(with_value_type=True)}

    assert actual_tags == expected_tags, f"Read {actual_read.query_name}: Tags not equal: {actual_tags} != {expected_tags}"
