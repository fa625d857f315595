"""Per-attempt state of a multipart upload.

An :class:`UploadSession` is owned by a single uploader and is only touched while
that uploader's lock is held; it does no locking of its own.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .models import AllSignaturesResponse, Chunk, SignaturePair


@dataclass
class UploadSession:
    chunks: Dict[int, Chunk]
    upload_id: Optional[str] = None
    init_signature: Optional[SignaturePair] = None
    list_signature: Optional[SignaturePair] = None
    complete_signature: Optional[SignaturePair] = None
    _confirmed: int = field(default=0, repr=False)

    @classmethod
    def from_chunks(cls, chunks: Iterable[Chunk]) -> "UploadSession":
        return cls(chunks={chunk.part_number: chunk for chunk in chunks})

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def part_numbers(self) -> List[int]:
        return sorted(self.chunks)

    def assign_signatures(self, signatures: AllSignaturesResponse) -> None:
        for part_number, chunk in self.chunks.items():
            chunk.signature = signatures.chunk_signatures[part_number]
        self.list_signature = signatures.list_signature
        self.complete_signature = signatures.complete_signature

    def confirm_etag(self, part_number: int, etag: str) -> bool:
        """Record the ETag for a part.

        Returns True only for the confirmation that completes the ETag table, so
        exactly one caller per cycle goes on to reconcile.
        """
        chunk = self.chunks[part_number]
        newly_confirmed = chunk.etag is None
        chunk.etag = etag
        if not newly_confirmed:
            return False
        self._confirmed += 1
        return self._confirmed == self.total_chunks

    def invalidate(self, part_numbers: Iterable[int]) -> None:
        """Forget ETags so the parts count as unconfirmed until re-uploaded."""
        for part_number in part_numbers:
            chunk = self.chunks[part_number]
            if chunk.etag is not None:
                chunk.etag = None
                self._confirmed -= 1

    def etag_table(self) -> Dict[int, str]:
        return {n: c.etag for n, c in self.chunks.items() if c.etag is not None}

    def record_progress(self, part_number: int, loaded: int) -> int:
        """Store bytes sent for a part and return the sum over all parts."""
        self.chunks[part_number].loaded = loaded
        return self.total_loaded

    @property
    def total_loaded(self) -> int:
        return sum(chunk.loaded for chunk in self.chunks.values())
