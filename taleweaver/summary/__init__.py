"""Context compaction.

  digest  — the versioned, mergeable SummaryDigest
  engine  — trigger rule, windowing, generation and commit
"""

from .digest import (  # noqa: F401
    SummaryDigest,
    compress_digest,
    merge_digests,
    parse_digest,
    placeholder_digest,
    serialize_digest,
)
from .engine import SummaryEngine, summary_due  # noqa: F401
