"""
Exceptions
Error types shared by the detector, the alert engine and the storage adapters.

Data problems inside a detection window are never raised: they produce an
empty finding list or an "insufficient data" finding. Everything below is
an infrastructure or input failure.
"""


class AlertEngineError(Exception):
    """Base class for alerting errors"""


class RecordReaderError(AlertEngineError):
    """Event records could not be read"""


class RuleStoreError(AlertEngineError):
    """Alert rules could not be read or written"""


class StaleRuleStateError(RuleStoreError):
    """
    Conditional rule update lost the race.

    Raised when a rule's last trigger time changed between the read that
    passed the cooldown check and the write that claims the trigger.
    """

    def __init__(self, rule_id: str):
        super().__init__(f"Rule {rule_id} was triggered concurrently")
        self.rule_id = rule_id


class RuleNotFoundError(RuleStoreError):
    def __init__(self, rule_id: str):
        super().__init__(f"Rule not found: {rule_id}")
        self.rule_id = rule_id


class InvalidWindowError(ValueError, AlertEngineError):
    """Analysis/baseline window sizes are inconsistent"""


class InsufficientDataError(AlertEngineError):
    """Not enough records for the requested analysis"""
