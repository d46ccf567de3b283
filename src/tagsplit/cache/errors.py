"""Error definitions for cache reading, graph building and reassembly.

Every failure is raised as a :class:`CacheError` subclass carrying a stable
code and a structured context, so callers can surface it however they like.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

E_CORRUPT_HEADER = "E_CORRUPT_HEADER"
E_CHECKSUM_MISMATCH = "E_CHECKSUM_MISMATCH"
E_OFFSET_OUT_OF_RANGE = "E_OFFSET_OUT_OF_RANGE"
E_UNKNOWN_TAG_CLASS = "E_UNKNOWN_TAG_CLASS"
E_DANGLING_REFERENCE = "E_DANGLING_REFERENCE"
E_MISSING_TAG_RECORD = "E_MISSING_TAG_RECORD"
E_DUPLICATE_TAG_ID = "E_DUPLICATE_TAG_ID"
E_DUPLICATE_TAG_PATH = "E_DUPLICATE_TAG_PATH"
E_UNKNOWN_TAG_ID = "E_UNKNOWN_TAG_ID"
E_TAG_IN_USE = "E_TAG_IN_USE"
E_CORRUPT_RECORD = "E_CORRUPT_RECORD"
E_TAG_LIMIT = "E_TAG_LIMIT"
E_SESSION_STATE = "E_SESSION_STATE"
E_INTERNAL = "E_INTERNAL"


@dataclass
class CacheError(Exception):
    message: str
    context: Optional[Dict[str, Any]] = None
    code: str = E_INTERNAL

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}" + (
            f" | ctx={self.context}" if self.context else ""
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context or {},
        }


@dataclass
class CorruptHeader(CacheError):
    code: str = E_CORRUPT_HEADER


@dataclass
class ChecksumMismatch(CacheError):
    code: str = E_CHECKSUM_MISMATCH


@dataclass
class OffsetOutOfRange(CacheError):
    code: str = E_OFFSET_OUT_OF_RANGE


@dataclass
class UnknownTagClass(CacheError):
    code: str = E_UNKNOWN_TAG_CLASS


@dataclass
class DanglingReference(CacheError):
    code: str = E_DANGLING_REFERENCE


@dataclass
class MissingTagRecord(CacheError):
    code: str = E_MISSING_TAG_RECORD


@dataclass
class DuplicateTagId(CacheError):
    code: str = E_DUPLICATE_TAG_ID


@dataclass
class DuplicateTagPath(CacheError):
    code: str = E_DUPLICATE_TAG_PATH


@dataclass
class UnknownTagId(CacheError):
    code: str = E_UNKNOWN_TAG_ID


@dataclass
class TagInUse(CacheError):
    code: str = E_TAG_IN_USE


@dataclass
class CorruptRecord(CacheError):
    code: str = E_CORRUPT_RECORD


@dataclass
class TagLimitExceeded(CacheError):
    code: str = E_TAG_LIMIT


@dataclass
class SessionStateError(CacheError):
    code: str = E_SESSION_STATE


def internal_error(
    message: str, context: Optional[Dict[str, Any]] = None
) -> CacheError:
    return CacheError(message=message, context=context, code=E_INTERNAL)


__all__ = [
    "CacheError",
    "CorruptHeader",
    "ChecksumMismatch",
    "OffsetOutOfRange",
    "UnknownTagClass",
    "DanglingReference",
    "MissingTagRecord",
    "DuplicateTagId",
    "DuplicateTagPath",
    "UnknownTagId",
    "TagInUse",
    "CorruptRecord",
    "TagLimitExceeded",
    "SessionStateError",
    "internal_error",
    "E_CORRUPT_HEADER",
    "E_CHECKSUM_MISMATCH",
    "E_OFFSET_OUT_OF_RANGE",
    "E_UNKNOWN_TAG_CLASS",
    "E_DANGLING_REFERENCE",
    "E_MISSING_TAG_RECORD",
    "E_DUPLICATE_TAG_ID",
    "E_DUPLICATE_TAG_PATH",
    "E_UNKNOWN_TAG_ID",
    "E_TAG_IN_USE",
    "E_CORRUPT_RECORD",
    "E_TAG_LIMIT",
    "E_SESSION_STATE",
    "E_INTERNAL",
]
