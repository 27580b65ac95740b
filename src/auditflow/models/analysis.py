"""Analyzer input/output models."""

import re
from typing import Callable, Optional

from pydantic import BaseModel, Field, PrivateAttr

from auditflow.models.issue import IssueFinding

_LINE_BREAK = re.compile(r"\r?\n")


def count_lines(content: str) -> int:
    """Count lines the way editors do: an empty file has one line."""
    return len(_LINE_BREAK.split(content))


class SourceFile(BaseModel):
    """
    One file handed to the scheduler.

    Files collected from a checkout or an archive carry only their path,
    language and size. The content is read by load() on first use, so files
    past the max_files cap are never read.
    """

    path: str
    language: str = "text"
    content: Optional[str] = None
    size: Optional[int] = None

    _reader: Optional[Callable[[], bytes]] = PrivateAttr(default=None)

    @classmethod
    def deferred(cls, path: str, language: str, size: int, reader: Callable[[], bytes]) -> "SourceFile":
        """A file whose content is read by `reader` when first needed."""
        source = cls(path=path, language=language, size=size)
        source._reader = reader
        return source

    @property
    def is_loaded(self) -> bool:
        return self.content is not None

    def load(self) -> str:
        """
        Return the content, reading and decoding it on the first call.

        Raises:
            OSError: if the underlying file or archive member cannot be read
            UnicodeDecodeError: if the content is not UTF-8
        """
        if self.content is None:
            if self._reader is None:
                raise OSError(f"No content available for {self.path}")
            self.content = self._reader().decode("utf-8")
        return self.content

    @property
    def line_count(self) -> int:
        return count_lines(self.load())

    @property
    def size_bytes(self) -> int:
        if self.size is not None:
            return self.size
        return len(self.load().encode("utf-8"))


class AnalysisResult(BaseModel):
    """Analyzer output for one file."""

    issues: list[IssueFinding] = Field(default_factory=list)
    quality_score: float = Field(default=100.0, ge=0.0, le=100.0)
    summary: Optional[str] = None
