"""Two-stage validation of record payloads."""

from teamledger.validation.validator import RecordValidator

__all__ = ["RecordValidator"]
