"""Exceptions raised by the retail RFM pipeline.

All of them inherit from ValueError, so callers that guard a step with
``except ValueError`` (the way an empty source table is reported) keep working.

Exception Hierarchy:
    RetailPipelineError (ValueError)
    ├── ConversionError
    ├── DuplicateKeyError
    └── EmptyInputError
"""


class RetailPipelineError(ValueError):
    """Base exception for all pipeline errors."""

    pass


class ConversionError(RetailPipelineError):
    """Raised when a column holds values that cannot be cast to its target type.

    Detection happens before the cast, so the offending values are reported
    instead of being silently turned into NULL.

    Attributes:
        column: Name of the column being converted
        target_type: Spark type the column was going to be cast to
        bad_count: Number of offending rows
        samples: A few offending raw values
    """

    def __init__(self, column: str, target_type: str, bad_count: int, samples=None):
        self.column = column
        self.target_type = target_type
        self.bad_count = bad_count
        self.samples = list(samples or [])
        message = (
            f"Column '{column}' has {bad_count} value(s) that cannot be converted to {target_type}"
        )
        if self.samples:
            message += f", e.g. {self.samples}"
        super().__init__(message)


class DuplicateKeyError(RetailPipelineError):
    """Raised when the cleaned table still has more than one row per line key.

    Attributes:
        key_columns: Columns forming the identity key
        duplicate_groups: Number of key groups with more than one row
    """

    def __init__(self, key_columns, duplicate_groups: int):
        self.key_columns = list(key_columns)
        self.duplicate_groups = duplicate_groups
        super().__init__(
            f"{duplicate_groups} group(s) share the same ({', '.join(self.key_columns)}) after cleaning"
        )


class EmptyInputError(RetailPipelineError):
    """Raised when a stage receives an empty table."""

    pass
