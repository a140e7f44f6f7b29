"""Record validation package."""

from src.validation.validator import RecordValidator, parse_amount

__all__ = ["RecordValidator", "parse_amount"]
