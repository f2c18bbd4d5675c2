"""
Python enums for persisted status columns.
Values are stored as plain strings; names and values MUST stay in sync with the DB.
"""

from enum import Enum


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    VERIFIED = "VERIFIED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    FAILED = "FAILED"


class PageStatus(str, Enum):
    VERIFIED = "VERIFIED"
    NEEDS_VISION = "NEEDS_VISION"


class TxDirection(str, Enum):
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"


class MatchStatus(str, Enum):
    UNMATCHED = "UNMATCHED"
    AUTO_MATCHED = "AUTO_MATCHED"
    MANUAL_MATCHED = "MANUAL_MATCHED"
    IGNORED = "IGNORED"


class DuplicateStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


class DuplicateResolution(str, Enum):
    KEEP_BOTH = "KEEP_BOTH"
    MERGE = "MERGE"
    DELETE_NEW = "DELETE_NEW"


class ImportFormat(str, Enum):
    XML_CAMT053 = "XML_CAMT053"
    PDF = "PDF"


class TierType(str, Enum):
    """Which extraction tier produced the statement."""
    XML = "XML"
    TEXT_LLM = "TEXT_LLM"
    VISION_LLM = "VISION_LLM"


class DedupOutcome(str, Enum):
    INSERTED = "INSERTED"
    FLAGGED = "FLAGGED"
    SKIPPED_DUPLICATE = "SKIPPED_DUPLICATE"
    SKIPPED = "SKIPPED"
