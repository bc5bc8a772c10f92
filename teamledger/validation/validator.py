"""
Two-Stage Record Validation

STAGE 1 - SCHEMA VALIDATION:
- The payload must parse as the details of the requested kind
- Types, required fields, non-negative amounts with two decimals

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Very old date detection
- Absurd or tiny amount detection
- Possible duplicates among the actor's visible records

IMPORTANT: Validation NEVER silently fixes issues, and semantic issues
are warnings only. A delegate may still propose the record; the owner
sees the warnings during review.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from teamledger.access.visibility import VisibilityFilter
from teamledger.config import LedgerSettings, get_settings
from teamledger.errors import UnavailableError
from teamledger.models.record import RecordDetails, RecordKind, parse_details
from teamledger.models.validation import ValidationIssue, ValidationResult


class RecordValidator:
    """
    Validates a record payload before it is proposed.

    Stage 1: Schema validation (no storage needed)
    Stage 2: Semantic validation (duplicate check needs a VisibilityFilter)
    """

    def __init__(
        self,
        visibility: Optional[VisibilityFilter] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            visibility: Used for duplicate checking.
                        If None, duplicate checking is skipped.
        """
        self._visibility = visibility
        self._settings = settings or get_settings().ledger

    def _validate_schema(
        self,
        kind: RecordKind,
        payload: Any,
    ) -> tuple[Optional[RecordDetails], list[ValidationIssue]]:
        """Stage 1. Returns the parsed details, or None with error issues."""
        try:
            return parse_details(kind, payload), []
        except ValidationError as e:
            return None, [
                ValidationIssue(
                    field=".".join(str(part) for part in error["loc"][1:]) or "payload",
                    issue_type=error["type"],
                    message=error["msg"],
                    severity="error",
                )
                for error in e.errors()
            ]
        except ValueError as e:
            return None, [
                ValidationIssue(
                    field="kind",
                    issue_type="kind_mismatch",
                    message=str(e),
                    severity="error",
                )
            ]

    def _validate_semantic(self, details: RecordDetails) -> list[ValidationIssue]:
        """Stage 2 checks that need no storage."""
        issues = []
        today = date.today()

        record_date = details.record_date
        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if record_date and record_date > max_future_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({record_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        min_reasonable_date = today - timedelta(days=365 * 5)
        if record_date and record_date < min_reasonable_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="suspicious_date",
                message=f"Date ({record_date}) seems unusually old",
                severity="warning",
                suggested_fix="Please verify the date",
            ))

        amount = details.amount_value
        max_amount = Decimal(str(self._settings.max_record_amount))
        if amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({amount:,.2f} {self._settings.currency}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        if details.kind != RecordKind.CLIENT.value and amount < Decimal("1"):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({amount}) seems unusually low",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        return issues

    async def _check_duplicates(
        self,
        actor_id: str,
        kind: RecordKind,
        details: RecordDetails,
    ) -> list[ValidationIssue]:
        """Same date, amount and searchable text as a visible record."""
        if self._visibility is None:
            return []
        try:
            existing = await self._visibility.list_visible(actor_id, kind)
        except UnavailableError:
            return [ValidationIssue(
                field="duplicate",
                issue_type="not_checked",
                message="Duplicate check skipped: records could not be loaded",
                severity="info",
            )]

        for record in existing:
            other = record.details
            if (
                other.record_date == details.record_date
                and other.amount_value == details.amount_value
                and [f.lower() for f in other.search_fields()]
                == [f.lower() for f in details.search_fields()]
            ):
                return [ValidationIssue(
                    field="duplicate",
                    issue_type="potential_duplicate",
                    message=f"A matching {kind.value} already exists ({record.author_display})",
                    severity="warning",
                    suggested_fix="Please verify this isn't a duplicate entry",
                )]
        return []

    async def validate(
        self,
        kind: RecordKind,
        payload: Any,
        actor_id: Optional[str] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation.

        Args:
            kind: Record kind the payload is for
            payload: Details payload (dict or model)
            actor_id: If given, duplicates are looked up among the
                      records this actor can see
        """
        details, issues = self._validate_schema(kind, payload)
        schema_valid = details is not None

        semantic_valid = False
        if details is not None:
            issues.extend(self._validate_semantic(details))
            if actor_id:
                issues.extend(await self._check_duplicates(actor_id, kind, details))
            semantic_valid = not any(issue.severity == "error" for issue in issues)

        return ValidationResult(
            kind=kind,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=issues,
            warnings=[issue.message for issue in issues if issue.severity == "warning"],
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Plain-language summary for the person submitting the record."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        if not result.schema_valid:
            lines.append("Some required information is missing or invalid:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.field}: {issue.message}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
