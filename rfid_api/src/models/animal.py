"""
Animal record models.

Pydantic schemas for:
- Animal rows read from the animal table
- The scan request body
- Paginated list responses
- Transient scan events pushed to the live feed
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Constants
# ============================================================================

# Columns that may appear in ORDER BY. Anything else is rejected.
SORTABLE_COLUMNS: Tuple[str, ...] = (
    "id",
    "rfid_code",
    "nama",
    "jenis",
    "usia",
    "status_kesehatan",
)

DEFAULT_SORT_COLUMN = "id"

DEFAULT_TABLE = "animals"

# Unquoted lower-case PostgreSQL identifier (max 63 bytes)
TABLE_NAME_PATTERN = re.compile(r"[a-z_][a-z0-9_]{0,62}")

LIVE_FEED_EVENT = "rfid-scanned"

SCAN_TIME_FORMAT = "%d/%m/%Y %H:%M:%S"


class SortOrder(str, Enum):
    """Sort direction for list queries."""
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "SortOrder":
        """Anything other than DESC (any case) sorts ascending."""
        if value and value.strip().upper() == cls.DESC.value:
            return cls.DESC
        return cls.ASC


def check_table_name(name: str) -> str:
    """
    Return ``name`` if it is safe to interpolate as a table identifier.

    Raises:
        ValueError: If the name is not a plain lower-case identifier
    """
    if not TABLE_NAME_PATTERN.fullmatch(name or ""):
        raise ValueError(f"invalid table name: {name!r}")
    return name


# ============================================================================
# Records
# ============================================================================


class AnimalRecord(BaseModel):
    """
    A row of the animal table (``animals`` unless configured otherwise).

    Rows are maintained outside this service; the API only reads them.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Surrogate primary key")
    rfid_code: str = Field(..., description="RFID tag value (lookup key)")
    nama: str = Field(..., description="Animal name")
    jenis: str = Field(..., description="Species / category")
    usia: int = Field(..., description="Age in years")
    status_kesehatan: str = Field(..., description="Health status")


class ScanRequest(BaseModel):
    """
    Body of ``POST /api/animal``.

    ``uid`` is optional at the schema level so a missing value is reported
    as a 400 by the handler rather than a schema error.
    """

    uid: Optional[str] = Field(None, description="RFID tag read by the scanner")


class AnimalListResponse(BaseModel):
    """Page of animal records plus pagination totals."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(..., ge=0, description="Rows matching the search")
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=0, alias="totalPages")
    data: List[AnimalRecord]


class ErrorResponse(BaseModel):
    """Error envelope returned on every failure path."""
    error: str
    message: str


# ============================================================================
# Live feed
# ============================================================================


class ScanEvent(BaseModel):
    """
    Transient event describing a matched scan.

    Built once per request, handed to the live feed and discarded.
    """

    rfid_code: str
    nama: str
    info_tambahan: str
    waktu_scan: str

    @classmethod
    def from_record(
        cls,
        record: AnimalRecord,
        scanned_at: Optional[datetime] = None,
        tz: str = "UTC"
    ) -> "ScanEvent":
        """
        Build a scan event from a matched record.

        Args:
            record: Matched animal record
            scanned_at: Scan instant (defaults to now, UTC)
            tz: IANA timezone used to render ``waktu_scan``

        Returns:
            ScanEvent ready for broadcasting
        """
        scanned_at = scanned_at or datetime.now(timezone.utc)
        local_time = scanned_at.astimezone(ZoneInfo(tz))
        return cls(
            rfid_code=record.rfid_code,
            nama=record.nama,
            info_tambahan=record.jenis,
            waktu_scan=local_time.strftime(SCAN_TIME_FORMAT),
        )
