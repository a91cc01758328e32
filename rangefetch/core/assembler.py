"""
Owns the fixed-size destination buffer for the blob.
"""

from rangefetch.exceptions import BoundsViolation


class BlobAssembler:
    """Writes received bytes at their offsets into a buffer that never resizes."""

    def __init__(self, total_length: int):
        if total_length < 0:
            raise ValueError(f"Total length cannot be negative, got {total_length}")
        self.total_length = total_length
        self._buffer = bytearray(total_length)

    def write(self, offset: int, data: bytes) -> None:
        """
        Copies ``data`` into the buffer starting at ``offset``.

        Re-delivery of the same bytes for the same offset is harmless; any
        earlier content at those positions is overwritten.

        Raises:
            BoundsViolation: If any byte would land outside the buffer.
        """
        end = offset + len(data)
        if offset < 0 or end > self.total_length:
            raise BoundsViolation(offset, end, self.total_length)
        self._buffer[offset:end] = data

    def finalize(self) -> bytes:
        """
        Returns the whole buffer.

        Only trustworthy once the coverage tracker reports completion; before that
        the unreceived positions are zero bytes.
        """
        return bytes(self._buffer)

    def view(self) -> memoryview:
        """A read-only view of the buffer, for hashing without a copy."""
        return memoryview(self._buffer).toreadonly()
