"""
Percentage bucketing.

Maps (subject id, flag id) to a stable slot so a subject always lands
on the same side of a percentage threshold for the same flag.

The hashed input is ``subject_id + flag_id``, concatenated in that
order with no separator. Each algorithm is versioned: switching the
algorithm of a live deployment reshuffles every subject and must be
treated as a migration.
"""

import hashlib
from enum import Enum

BUCKET_RANGE = 2 ** 31
_MASK_31 = BUCKET_RANGE - 1
_MASK_32 = 2 ** 32 - 1


class BucketAlgorithm(str, Enum):
    """Versioned hash algorithms for bucketing."""
    MD5_V1 = "md5-v1"
    POLYNOMIAL_V1 = "polynomial-v1"


DEFAULT_ALGORITHM = BucketAlgorithm.MD5_V1


def _md5_v1(value: str) -> int:
    digest = hashlib.md5(value.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") & _MASK_31


def _polynomial_v1(value: str) -> int:
    """
    Rolling ``h = 31 * h + c`` over UTF-16 code units, signed 32-bit.

    Reproduces the legacy browser deployment, which hashed JavaScript
    strings the same way, for every hash but one. A raw hash of exactly
    -2**31 lands in bucket 0 here, where the browser took Math.abs to
    2147483648 (bucket 48 of 100); keeping results inside [0, 2**31)
    requires the fold.
    """
    raw = value.encode("utf-16-le")
    h = 0
    for i in range(0, len(raw), 2):
        h = (31 * h + int.from_bytes(raw[i:i + 2], "little")) & _MASK_32
    if h >= BUCKET_RANGE:
        h -= 2 ** 32
    # abs(-2**31) is the only value outside the range; it folds to 0
    return abs(h) & _MASK_31


_ALGORITHMS = {
    BucketAlgorithm.MD5_V1: _md5_v1,
    BucketAlgorithm.POLYNOMIAL_V1: _polynomial_v1,
}


def bucket(
    subject_id: str,
    flag_id: str,
    algorithm: BucketAlgorithm = DEFAULT_ALGORITHM,
) -> int:
    """
    Stable bucket in [0, 2**31) for a subject and flag.

    Pure function of its inputs: same arguments, same bucket, in every
    process.
    """
    return _ALGORITHMS[BucketAlgorithm(algorithm)](subject_id + flag_id)


def bucket_percent(
    subject_id: str,
    flag_id: str,
    algorithm: BucketAlgorithm = DEFAULT_ALGORITHM,
) -> int:
    """Bucket reduced to [0, 100) for comparison with a percentage."""
    return bucket(subject_id, flag_id, algorithm) % 100


def in_rollout(
    subject_id: str,
    flag_id: str,
    percentage: int,
    algorithm: BucketAlgorithm = DEFAULT_ALGORITHM,
) -> bool:
    """True when the subject falls inside a percentage rollout."""
    return bucket_percent(subject_id, flag_id, algorithm) < percentage
