"""
Error Taxonomy for the Payout Engine

Validation errors subclass ValueError so callers that only know the
"ValueError means bad input" convention keep working. Lifecycle errors do not:
they mean the input was fine but the entity is in the wrong state.
"""


class SettlementEngineError(Exception):
    """Base class for every error raised by the engine."""


# =============================================================================
# VALIDATION ERRORS (no partial result is ever returned)
# =============================================================================


class ValidationError(SettlementEngineError, ValueError):
    """Input failed a business rule. Carries the offending field."""

    def __init__(self, field: str, value=None, message: str | None = None):
        self.field = field
        self.value = value
        super().__init__(message or f"{field} is invalid, got: {value!r}")


class InvalidPricing(ValidationError):
    pass


class InvalidExtraCost(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


class InvalidCount(ValidationError):
    pass


class InvalidRateConfig(ValidationError):
    pass


# =============================================================================
# LIFECYCLE / CONFLICT ERRORS
# =============================================================================


class InvalidDeductionState(SettlementEngineError):
    """A deduction transition was attempted from a non-pending state."""

    def __init__(self, deduction_id, current_status, action: str, message: str | None = None):
        self.deduction_id = deduction_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message or f"Cannot {action} deduction {deduction_id}: status is {current_status}"
        )


class InvalidStatementState(SettlementEngineError):
    def __init__(self, statement_id, current_status, action: str, message: str | None = None):
        self.statement_id = statement_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message or f"Cannot {action} statement {statement_id}: status is {current_status}"
        )


class InvalidSettlementState(SettlementEngineError):
    """A settlement is paid or locked, or a payout transition is out of order."""

    def __init__(self, settlement_id, current_status, action: str, message: str | None = None):
        self.settlement_id = settlement_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message or f"Cannot {action} settlement {settlement_id}: status is {current_status}"
        )


class ConcurrentModification(SettlementEngineError):
    """A compare-and-set write lost against another writer."""

    def __init__(self, entity: str, entity_id, expected_version, actual_version):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class StaleRateConfig(SettlementEngineError):
    """Settlements were computed with rates other than the requested ones."""

    def __init__(self, order_ids: list, requested, found: list):
        self.order_ids = order_ids
        self.requested = requested
        self.found = found
        super().__init__(
            f"Settlements for orders {order_ids} were computed with a different rate config; "
            f"rebuild with the historical rates confirmed"
        )


# =============================================================================
# LOOKUP ERRORS
# =============================================================================


class DeductionNotFound(SettlementEngineError, LookupError):
    def __init__(self, deduction_id):
        self.deduction_id = deduction_id
        super().__init__(f"Deduction not found: {deduction_id}")


class StatementNotFound(SettlementEngineError, LookupError):
    def __init__(self, statement_id):
        self.statement_id = statement_id
        super().__init__(f"Statement not found: {statement_id}")


# Flag name used for the warning-class result. It is never raised.
NEGATIVE_PAYOUT = "NegativePayout"
