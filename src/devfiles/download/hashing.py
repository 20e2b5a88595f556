"""Incremental content hashing for downloaded streams."""

import hashlib

HASH_ALGORITHM = "sha256"


class ContentHasher:
    """
    Accumulates a SHA-256 digest over a byte stream.

    One instance per downloaded file. Feed chunks with update() as they
    arrive; call hexdigest() once the stream has ended.
    """

    def __init__(self, name: str = HASH_ALGORITHM):
        self._hash = hashlib.new(name)
        self.bytes_seen = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self.bytes_seen += len(chunk)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()
