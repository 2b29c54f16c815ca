"""
Storage Names

Connection ids are free text, but file names and Chroma collection names
are not. ``storage_name`` keeps a readable slug of the id and appends a
short digest of the raw id, so two ids that slug the same ("shop/eu" and
"shop_eu") still land in different places.
"""

import hashlib
import re

DIGEST_LENGTH = 8


def storage_name(raw: str, max_length: int = 40) -> str:
    """
    Map ``raw`` to ``<slug>_<digest>`` using only ``[A-Za-z0-9_-]``.

    The result is deterministic, starts and ends with an alphanumeric
    character, and is at most ``max_length + DIGEST_LENGTH + 1`` long.
    """
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
    slug = re.sub(r"[^A-Za-z0-9_-]", "_", raw)[:max_length].strip("_-")
    return f"{slug or 'id'}_{digest}"
