"""Comparison of the store's part listing against the parts the client sent."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Tuple

from .models import Chunk, RemotePart

logger = logging.getLogger(__name__)


class ReconciliationOutcome(str, Enum):
    COMPLETE = "complete"
    MISSING_PARTS = "missing_parts"
    INVALID_PARTS = "invalid_parts"


@dataclass(frozen=True)
class ReconciliationResult:
    """What to do after a list-parts check.

    ``resubmit`` holds the local part numbers to upload again. ``stray`` holds
    remote part numbers with no local chunk; they cannot be re-sent and are left
    out of the completion request, which makes the store discard them.
    """

    outcome: ReconciliationOutcome
    resubmit: Tuple[int, ...] = ()
    stray: Tuple[int, ...] = ()


def reconcile(
    chunks: Mapping[int, Chunk],
    etags: Mapping[int, str],
    remote_parts: Iterable[RemotePart],
) -> ReconciliationResult:
    remote_parts = list(remote_parts)
    invalid = []
    stray = []

    for part in remote_parts:
        chunk = chunks.get(part.part_number)
        if chunk is None:
            stray.append(part.part_number)
            continue
        if part.etag != etags.get(part.part_number):
            logger.info(
                f"Part {part.part_number}: ETag mismatch "
                f"({part.etag} != {etags.get(part.part_number)})"
            )
            invalid.append(part.part_number)
        elif part.size != chunk.size:
            logger.info(f"Part {part.part_number}: size mismatch ({part.size} != {chunk.size})")
            invalid.append(part.part_number)

    if stray:
        logger.warning(f"Store lists parts with no local chunk: {sorted(stray)}")

    remote_numbers = {part.part_number for part in remote_parts}
    missing = sorted(set(chunks) - remote_numbers)
    # Checked by number rather than count: a stray part can make the counts match.
    if missing:
        logger.info(f"Store is missing parts {missing}")
        return ReconciliationResult(
            ReconciliationOutcome.MISSING_PARTS, tuple(missing), tuple(sorted(stray))
        )

    if invalid:
        return ReconciliationResult(
            ReconciliationOutcome.INVALID_PARTS, tuple(sorted(set(invalid))), tuple(sorted(stray))
        )

    return ReconciliationResult(ReconciliationOutcome.COMPLETE, stray=tuple(sorted(stray)))
