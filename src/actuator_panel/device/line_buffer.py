"""
Line reassembly for the serial byte stream.

The device writes newline-terminated records, but the transport hands us
arbitrary chunks: a record may be split across reads and one read may carry
several records. LineBuffer keeps the unterminated remainder between reads.
"""

import codecs

from actuator_panel.core.logging import get_logger

logger = get_logger()

# Longest unterminated record kept between reads (characters)
MAX_PENDING = 4096


class LineBuffer:
    """
    Buffers a partial line and yields complete records in arrival order.

    Records are trimmed and empty lines are dropped. A buffer belongs to one
    session; call clear() when the session ends.
    """

    def __init__(self, encoding: str = "utf-8", max_pending: int = MAX_PENDING):
        self.encoding = encoding
        self.max_pending = max_pending
        self.pending: str = ""
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def feed(self, chunk: bytes) -> list[str]:
        """
        Add a chunk of raw bytes and extract the records it completes.

        Args:
            chunk: Raw bytes read from the transport.

        Returns:
            Zero or more complete, trimmed, non-empty records.
        """
        self.pending += self._decoder.decode(chunk)

        segments = self.pending.split("\n")
        self.pending = segments.pop()
        if len(self.pending) > self.max_pending:
            logger.warning(
                f"Dropping unterminated record of {len(self.pending)} characters "
                f"(limit {self.max_pending})"
            )
            self.pending = ""

        records = []
        for segment in segments:
            record = segment.strip()
            if record:
                records.append(record)

        if records:
            logger.verbose(f"Reassembled {len(records)} record(s), pending: {self.pending!r}")

        return records

    def clear(self) -> None:
        """Drop any partial record and decoder state."""
        self.pending = ""
        self._decoder.reset()
