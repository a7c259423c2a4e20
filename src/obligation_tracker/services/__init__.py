__all__ = [
    "generate_windows",
    "generate_windows_for_year",
    "ensure_windows",
    "find_overlapping_windows",
    "get_overlapping_windows",
    "get_window",
    "get_windows_by_ids",
    "compute_occurrences",
    "compute_due_dates",
    "project_period_record",
    "validate_obligation_schedule",
    "derive_status",
    "refresh_derived_fields",
    "calculate_payment_breakdown",
    "get_occurrence_statuses",
    "calculate_progress",
    "match_transactions",
    "unassign_transaction_from_record",
    "build_occurrence_ledger",
    "match_into_ledger",
    "project_ledger",
    "pin_to_record",
    "check_record_invariants",
    "commit_atomic",
    "commit_with_retry",
    "fetch_transactions_by_ids",
    "get_period_status",
    "get_records_for_obligation",
    "reconcile_granularity",
    "classify_record_change",
    "handle_period_record_change",
    "on_obligation_event",
    "recalculate_obligation_periods",
    "get_summary",
    "check_tri_view_consistency",
    "get_period_overview",
    "get_obligations",
    "create_obligation",
    "edit_obligation",
    "deactivate_obligation",
    "seed_period_records",
    "create_transaction",
    "get_transactions_for_obligation",
    "assign_transaction",
    "unassign_transaction",
    "assign_transactions_to_period",
]

from obligation_tracker.services.calendar_service import (
    generate_windows,
    generate_windows_for_year,
    ensure_windows,
    find_overlapping_windows,
    get_overlapping_windows,
    get_window,
    get_windows_by_ids
)
from obligation_tracker.services.occurrence_service import (
    compute_occurrences,
    compute_due_dates,
    project_period_record,
    validate_obligation_schedule
)
from obligation_tracker.services.status_service import (
    derive_status,
    refresh_derived_fields,
    calculate_payment_breakdown,
    get_occurrence_statuses,
    calculate_progress
)
from obligation_tracker.services.matching_service import (
    match_transactions,
    unassign_transaction_from_record,
    build_occurrence_ledger,
    match_into_ledger,
    project_ledger,
    pin_to_record,
    check_record_invariants
)
from obligation_tracker.services.period_record_service import (
    commit_atomic,
    commit_with_retry,
    fetch_transactions_by_ids,
    get_period_status,
    get_records_for_obligation
)
from obligation_tracker.services.reconciliation_service import reconcile_granularity
from obligation_tracker.services.coordinator_service import (
    classify_record_change,
    handle_period_record_change,
    on_obligation_event
)
from obligation_tracker.services.recalculation_service import recalculate_obligation_periods
from obligation_tracker.services.summary_service import (
    get_summary,
    check_tri_view_consistency,
    get_period_overview
)
from obligation_tracker.services.obligation_service import (
    get_obligations,
    create_obligation,
    edit_obligation,
    deactivate_obligation,
    seed_period_records
)
from obligation_tracker.services.transaction_service import (
    create_transaction,
    get_transactions_for_obligation,
    assign_transaction,
    unassign_transaction,
    assign_transactions_to_period
)
