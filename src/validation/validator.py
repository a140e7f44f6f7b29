"""
Record Validation

Checks the record form before anything is sent to the store.

STAGE 1 - REQUIRED INPUTS (errors):
- An amount that parses as a finite number
- A signed-in user to own the record
- A selected account

STAGE 2 - CONSISTENCY (warnings only):
- Non-positive amount (the kind carries the direction, so a negative
  magnitude is almost always a typo)
- Account id not present in the current snapshot
- Category name with no category of the same kind

IMPORTANT: An error here does not produce a user-facing message. The
coordinator treats it as a guard and simply does nothing. Warnings are
informational and never block a save.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional

from src.models.ledger import (
    LedgerSnapshot,
    RecordDraft,
    User,
    ValidationIssue,
    ValidationResult,
)
from src.models.state import RecordForm


def parse_amount(raw: str) -> Optional[Decimal]:
    """Parse a typed amount; None when empty or not a finite number."""
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


class RecordValidator:
    """Validates a record form against the current user and snapshot."""

    def _check_required(
        self,
        form: RecordForm,
        user: Optional[User],
    ) -> tuple[Optional[Decimal], list[ValidationIssue]]:
        issues = []

        amount = parse_amount(form.amount)
        if amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="An amount is required",
                severity="error",
            ))

        if user is None:
            issues.append(ValidationIssue(
                field="owner",
                issue_type="missing",
                message="No signed-in user to own the record",
                severity="error",
            ))

        if not form.account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="An account must be selected",
                severity="error",
            ))

        return amount, issues

    def _check_consistency(
        self,
        form: RecordForm,
        amount: Decimal,
        snapshot: LedgerSnapshot,
    ) -> list[ValidationIssue]:
        issues = []

        if amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({amount}) is not positive; the kind already sets the direction",
                severity="warning",
            ))

        if snapshot.accounts and snapshot.find_account(form.account_id) is None:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="dangling_reference",
                message="Selected account no longer exists",
                severity="warning",
            ))

        if snapshot.categories and not any(
            c.name == form.category and c.kind == form.kind
            for c in snapshot.categories
        ):
            issues.append(ValidationIssue(
                field="category",
                issue_type="unknown_category",
                message=f"No {form.kind.value} category named '{form.category}'",
                severity="warning",
            ))

        return issues

    def validate(
        self,
        form: RecordForm,
        user: Optional[User],
        snapshot: Optional[LedgerSnapshot] = None,
    ) -> ValidationResult:
        """
        Run both stages.

        Returns:
            ValidationResult; ``draft`` is set only when there are no errors
        """
        amount, issues = self._check_required(form, user)

        if issues:
            return ValidationResult(is_valid=False, issues=issues)

        issues.extend(self._check_consistency(form, amount, snapshot or LedgerSnapshot()))

        draft = RecordDraft(
            amount=amount,
            kind=form.kind,
            category=form.category,
            account_id=form.account_id,
            note=form.note,
            owner_id=user.id,
        )
        return ValidationResult(is_valid=True, draft=draft, issues=issues)
