"""Модели данных Obligation Tracker."""

from obligation_tracker.models.enums import (
    TransactionType,
    Frequency,
    PeriodGranularity,
    OutflowPeriodStatus,
    InflowPeriodStatus,
    PaymentType,
    ObligationEventKind,
    RecordChangeKind,
)
from obligation_tracker.models.models import (
    Base,
    ObligationDB,
    PeriodWindowDB,
    PeriodRecordDB,
    TransactionDB,
    ObligationCreate,
    ObligationUpdate,
    Obligation,
    PeriodWindow,
    TransactionCreate,
    Transaction,
    PeriodRecord,
    OccurrenceProjection,
    MatchResult,
    LedgerEntry,
    OccurrenceLedger,
    PaymentBreakdown,
    TransactionEventPayload,
    ObligationEditedPayload,
    WindowCreatedPayload,
    GranularityResult,
    EventResult,
    RecalculationResult,
    ObligationSummary,
    TriViewConsistencyReport,
)

__all__ = [
    "TransactionType",
    "Frequency",
    "PeriodGranularity",
    "OutflowPeriodStatus",
    "InflowPeriodStatus",
    "PaymentType",
    "ObligationEventKind",
    "RecordChangeKind",
    "Base",
    "ObligationDB",
    "PeriodWindowDB",
    "PeriodRecordDB",
    "TransactionDB",
    "ObligationCreate",
    "ObligationUpdate",
    "Obligation",
    "PeriodWindow",
    "TransactionCreate",
    "Transaction",
    "PeriodRecord",
    "OccurrenceProjection",
    "MatchResult",
    "LedgerEntry",
    "OccurrenceLedger",
    "PaymentBreakdown",
    "TransactionEventPayload",
    "ObligationEditedPayload",
    "WindowCreatedPayload",
    "GranularityResult",
    "EventResult",
    "RecalculationResult",
    "ObligationSummary",
    "TriViewConsistencyReport",
]
