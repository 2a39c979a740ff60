"""Record store module."""

from .types import AppointmentRecord, InquiryRecord, TherapistRecord
from .store import SQLRecordStore, get_record_store, parse_id

__all__ = [
    # Types
    "AppointmentRecord",
    "InquiryRecord",
    "TherapistRecord",
    # Store
    "SQLRecordStore",
    "get_record_store",
    "parse_id",
]
