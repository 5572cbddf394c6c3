"""Shared data type definitions."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ByteRange:
    """
    Inclusive byte window ``[start, end]`` inside an object of ``total`` bytes.
    """
    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"

    def header_value(self) -> str:
        return f"bytes={self.start}-{self.end}"
