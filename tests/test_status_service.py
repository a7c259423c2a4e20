"""
Тесты расчёта статуса периода и производных полей записи.

Проверяют таблицу приоритетов статусов для платежей и поступлений,
сверку по сумме (без сверхплатежей), пересчёт итогов и вспомогательные
отчёты (разбивка, текстовые статусы, прогресс).
"""

import pytest
from datetime import date
from decimal import Decimal
from typing import Optional

from obligation_tracker.models import (
    Frequency,
    InflowPeriodStatus,
    OutflowPeriodStatus,
    PaymentType,
    PeriodRecord,
    TransactionType,
)
from obligation_tracker.services import status_service
from obligation_tracker.services.status_service import (
    calculate_payment_breakdown,
    calculate_progress,
    derive_status,
    get_occurrence_statuses,
    refresh_derived_fields,
)

from test_factories import make_month_window, make_obligation, make_record


def _pay(
    record: PeriodRecord,
    index: int,
    amount: Decimal,
    payment_type: Optional[PaymentType] = PaymentType.REGULAR,
    now: date = date(2025, 3, 1),
) -> PeriodRecord:
    """Помечает вхождение оплаченным напрямую, минуя сопоставление."""
    transaction_ids = list(record.occurrence_transaction_ids)
    amounts = list(record.occurrence_amounts)
    payment_types = list(record.occurrence_payment_types)
    transaction_ids[index] = f"txn-{index}"
    amounts[index] = amount
    payment_types[index] = payment_type if record.is_outflow else None
    return refresh_derived_fields(record.model_copy(update={
        "occurrence_transaction_ids": transaction_ids,
        "occurrence_amounts": amounts,
        "occurrence_payment_types": payment_types,
    }), now)


@pytest.fixture
def single_bill():
    """Платёж 100.00 с одним вхождением 2025-03-10 в окне марта."""
    obligation = make_obligation(frequency=Frequency.MONTHLY, reference_date=date(2025, 3, 10))
    return make_record(obligation, make_month_window(2025, 3), date(2025, 3, 1))


@pytest.fixture
def two_occurrence_bill():
    """Платёж 100.00 раз в две недели: 2025-03-05 и 2025-03-19."""
    obligation = make_obligation(frequency=Frequency.BIWEEKLY, reference_date=date(2025, 3, 5))
    return make_record(obligation, make_month_window(2025, 3), date(2025, 3, 1))


@pytest.fixture
def salary_record():
    """Зарплата 2000.00 раз в две недели: 3, 17 и 31 января."""
    obligation = make_obligation(
        type=TransactionType.INCOME,
        frequency=Frequency.BIWEEKLY,
        reference_date=date(2025, 1, 3),
        amount=Decimal("2000.00"),
    )
    return make_record(obligation, make_month_window(2025, 1), date(2025, 1, 1))


class TestOutflowStatus:
    """Таблица приоритетов статуса обязательного платежа."""

    @pytest.mark.parametrize("today, expected", [
        (date(2025, 3, 1), OutflowPeriodStatus.PENDING),
        (date(2025, 3, 7), OutflowPeriodStatus.DUE_SOON),
        (date(2025, 3, 10), OutflowPeriodStatus.DUE_SOON),
        (date(2025, 3, 11), OutflowPeriodStatus.PENDING),
        (date(2025, 3, 12), OutflowPeriodStatus.OVERDUE),
    ])
    def test_unpaid_single_occurrence(self, single_bill, today, expected):
        """Неоплаченное вхождение: ожидание, скорый срок, льготный день, просрочка."""
        assert derive_status(single_bill, today) == expected

    def test_paid_after_due_date(self, single_bill):
        """Оплачено полностью, срок прошёл -> PAID."""
        record = _pay(single_bill, 0, Decimal("100.00"))

        assert derive_status(record, date(2025, 3, 15)) == OutflowPeriodStatus.PAID

    def test_paid_before_due_date(self, single_bill):
        """Оплачено до наступления срока -> PAID_EARLY."""
        record = _pay(single_bill, 0, Decimal("100.00"))

        assert derive_status(record, date(2025, 3, 5)) == OutflowPeriodStatus.PAID_EARLY

    def test_overdue_dominates_partial(self, two_occurrence_bill):
        """Одно просроченное и одно оплаченное вхождение -> OVERDUE, а не PARTIAL."""
        record = _pay(two_occurrence_bill, 1, Decimal("100.00"))

        assert derive_status(record, date(2025, 3, 20)) == OutflowPeriodStatus.OVERDUE

    def test_partial_without_overdue(self, two_occurrence_bill):
        """Первое вхождение оплачено, второе не скоро -> PARTIAL."""
        record = _pay(two_occurrence_bill, 0, Decimal("100.00"))

        assert derive_status(record, date(2025, 3, 10)) == OutflowPeriodStatus.PARTIAL

    def test_short_amount_is_partial(self, single_bill):
        """Все вхождения отмечены оплаченными, но сумма меньше ожидаемой -> PARTIAL."""
        record = _pay(single_bill, 0, Decimal("60.00"))

        assert record.is_fully_paid
        assert derive_status(record, date(2025, 3, 15)) == OutflowPeriodStatus.PARTIAL

    def test_extra_principal_does_not_settle_period(self, single_bill):
        """Сверхплатёж не засчитывается в погашение ожидаемой суммы."""
        record = _pay(single_bill, 0, Decimal("250.00"), PaymentType.EXTRA_PRINCIPAL)

        assert derive_status(record, date(2025, 3, 15)) == OutflowPeriodStatus.PARTIAL

    def test_single_large_payment_settles_period(self, two_occurrence_bill):
        """Одного крупного платежа достаточно, чтобы период считался оплаченным."""
        record = _pay(two_occurrence_bill, 0, Decimal("200.00"), PaymentType.REGULAR)

        assert derive_status(record, date(2025, 3, 25)) == OutflowPeriodStatus.PAID

    def test_inactive_obligation_is_pending(self):
        """Неактивное обязательство -> PENDING с нулевой суммой к оплате."""
        record = make_record(make_obligation(is_active=False), make_month_window(2025, 3))

        assert derive_status(record, date(2025, 3, 31)) == OutflowPeriodStatus.PENDING
        assert record.total_amount_due == Decimal("0.00")


class TestInflowStatus:
    """Таблица приоритетов статуса ожидаемого поступления."""

    def test_not_expected_when_inactive(self):
        """Неактивное поступление -> NOT_EXPECTED."""
        record = make_record(
            make_obligation(type=TransactionType.INCOME, is_active=False),
            make_month_window(2025, 1),
        )

        assert derive_status(record, date(2025, 1, 15)) == InflowPeriodStatus.NOT_EXPECTED

    def test_pending_before_first_payday(self, salary_record):
        """До первой выплаты -> PENDING."""
        assert derive_status(salary_record, date(2025, 1, 2)) == InflowPeriodStatus.PENDING

    def test_overdue_after_grace(self, salary_record):
        """Выплата не поступила через льготный день -> OVERDUE."""
        assert derive_status(salary_record, date(2025, 1, 5)) == InflowPeriodStatus.OVERDUE

    def test_partial(self, salary_record):
        """Первая выплата получена, следующая ещё не наступила -> PARTIAL."""
        record = _pay(salary_record, 0, Decimal("2000.00"))

        assert derive_status(record, date(2025, 1, 10)) == InflowPeriodStatus.PARTIAL

    def test_received(self, salary_record):
        """Все выплаты получены -> RECEIVED."""
        record = salary_record
        for index in range(record.occurrence_count):
            record = _pay(record, index, Decimal("2000.00"))

        assert derive_status(record, date(2025, 2, 1)) == InflowPeriodStatus.RECEIVED
        assert record.occurrence_payment_types == [None, None, None]


class TestDerivedFields:
    """Пересчёт производных полей записи."""

    def test_overpayment_totals(self, single_bill):
        """Переплата: остаток 0, переплата = paid - due."""
        record = _pay(single_bill, 0, Decimal("130.00"))

        assert record.total_amount_paid == Decimal("130.00")
        assert record.total_amount_unpaid == Decimal("0.00")
        assert record.total_amount_overpaid == Decimal("30.00")
        assert record.total_amount_paid + record.total_amount_unpaid == (
            record.total_amount_due + record.total_amount_overpaid
        )

    def test_refresh_is_idempotent(self, two_occurrence_bill):
        """Повторный пересчёт не меняет запись."""
        record = _pay(two_occurrence_bill, 0, Decimal("100.00"))

        again = refresh_derived_fields(record, date(2025, 3, 1))

        assert again.model_dump() == record.model_dump()

    def test_next_unpaid_due_date(self, two_occurrence_bill):
        """Ближайшая неоплаченная дата сдвигается после оплаты первого вхождения."""
        record = _pay(two_occurrence_bill, 0, Decimal("100.00"))

        assert record.next_unpaid_due_date == date(2025, 3, 19)
        assert record.is_partially_paid
        assert not record.is_fully_paid

    def test_status_failure_keeps_previous_status(self, single_bill, monkeypatch):
        """Ошибка расчёта статуса не прерывает пересчёт: статус сохраняется."""
        def broken_status(record, now=None):
            raise RuntimeError("status engine failure")

        monkeypatch.setattr(status_service, "derive_status", broken_status)

        record = _pay(single_bill, 0, Decimal("100.00"))

        assert record.status == single_bill.status
        assert record.total_amount_paid == Decimal("100.00")
        assert record.occurrences_paid == 1


class TestReporting:
    """Разбивка, текстовые статусы и прогресс периода."""

    def test_payment_breakdown(self, two_occurrence_bill):
        """Суммы распределяются по типам платежей."""
        record = _pay(two_occurrence_bill, 0, Decimal("100.00"), PaymentType.CATCH_UP)
        record = _pay(record, 1, Decimal("150.00"), PaymentType.EXTRA_PRINCIPAL)

        breakdown = calculate_payment_breakdown(record)

        assert breakdown.catch_up == Decimal("100.00")
        assert breakdown.extra_principal == Decimal("150.00")
        assert breakdown.regular == Decimal("0.00")
        assert breakdown.total_excluding_extra == Decimal("100.00")

    def test_occurrence_statuses(self, two_occurrence_bill):
        """Тексты статусов выровнены по вхождениям."""
        record = _pay(two_occurrence_bill, 0, Decimal("100.00"), PaymentType.ADVANCE)

        assert get_occurrence_statuses(record, date(2025, 3, 17)) == ["Оплачено заранее", "Скоро срок"]
        assert get_occurrence_statuses(record, date(2025, 3, 25)) == ["Оплачено заранее", "Просрочено"]

    def test_progress(self, two_occurrence_bill):
        """Прогресс по сумме и по вхождениям."""
        record = _pay(two_occurrence_bill, 0, Decimal("100.00"))

        progress = calculate_progress(record)

        assert progress["payment_progress_percentage"] == 50
        assert progress["occurrence_progress_percentage"] == 50

    def test_progress_for_empty_record(self):
        """Без вхождений прогресс нулевой."""
        record = make_record(make_obligation(is_active=False), make_month_window(2025, 3))

        assert calculate_progress(record) == {
            "payment_progress_percentage": 0,
            "occurrence_progress_percentage": 0,
        }
