"""
Тесты расчёта вхождений периодических обязательств.

Проверяют:
- Количество и даты вхождений для всех частот
- Поведение на конце месяца (31-е число, високосный год)
- Проекцию обязательства на окно (новая запись периода)
- Отказ для некорректного расписания
"""

import pytest
from hypothesis import given, settings, strategies as st
from datetime import date, timedelta
from decimal import Decimal

from obligation_tracker.models import Frequency, OutflowPeriodStatus, PeriodGranularity, TransactionType
from obligation_tracker.services.occurrence_service import (
    calculate_withholding,
    compute_due_dates,
    compute_occurrences,
    occurrence_at,
    project_period_record,
    validate_obligation_schedule,
)
from obligation_tracker.utils.exceptions import InvalidObligationError

from test_factories import make_month_window, make_obligation
from property_generators import catalog_windows, obligations, reference_dates


class TestOccurrenceScenarios:
    """Сценарии расчёта вхождений."""

    def test_biweekly_salary_in_january(self):
        """Зарплата раз в две недели с 2025-01-03: в январе 3 вхождения на 6000."""
        salary = make_obligation(
            type=TransactionType.INCOME,
            frequency=Frequency.BIWEEKLY,
            reference_date=date(2025, 1, 3),
            amount=Decimal("2000.00"),
        )

        projection = compute_occurrences(salary, make_month_window(2025, 1))

        assert projection.count == 3
        assert projection.due_dates == [date(2025, 1, 3), date(2025, 1, 17), date(2025, 1, 31)]
        assert projection.total_expected_amount == Decimal("6000.00")

    def test_monthly_on_31st_in_february(self):
        """Ежемесячно 31-го: в феврале 2025 одно вхождение 28 февраля."""
        bill = make_obligation(frequency=Frequency.MONTHLY, reference_date=date(2025, 1, 31))

        projection = compute_occurrences(bill, make_month_window(2025, 2))

        assert projection.count == 1
        assert projection.due_dates == [date(2025, 2, 28)]
        assert projection.total_expected_amount == Decimal("100.00")

    def test_monthly_on_31st_in_leap_february(self):
        """В високосном феврале вхождение приходится на 29-е."""
        bill = make_obligation(frequency=Frequency.MONTHLY, reference_date=date(2024, 1, 31))

        projection = compute_occurrences(bill, make_month_window(2024, 2))

        assert projection.due_dates == [date(2024, 2, 29)]

    def test_month_end_does_not_drift(self):
        """После короткого месяца день вхождения возвращается к 31-му."""
        assert occurrence_at(date(2025, 1, 31), Frequency.MONTHLY, 1) == date(2025, 2, 28)
        assert occurrence_at(date(2025, 1, 31), Frequency.MONTHLY, 2) == date(2025, 3, 31)
        assert occurrence_at(date(2025, 1, 31), Frequency.MONTHLY, -2) == date(2024, 11, 30)

    def test_reference_date_after_window(self):
        """Опорная дата может быть позже окна: вхождения считаются назад."""
        bill = make_obligation(frequency=Frequency.MONTHLY, reference_date=date(2025, 6, 10))

        projection = compute_occurrences(bill, make_month_window(2025, 1))

        assert projection.due_dates == [date(2025, 1, 10)]

    def test_quarterly_skips_months(self):
        """Ежеквартальное обязательство отсутствует в промежуточных месяцах."""
        tax = make_obligation(frequency=Frequency.QUARTERLY, reference_date=date(2025, 1, 15))

        assert compute_occurrences(tax, make_month_window(2025, 2)).count == 0
        assert compute_occurrences(tax, make_month_window(2025, 4)).due_dates == [date(2025, 4, 15)]

    def test_annual_from_leap_day(self):
        """Ежегодное с 29 февраля в невисокосный год приходится на 28 февраля."""
        insurance = make_obligation(frequency=Frequency.ANNUAL, reference_date=date(2024, 2, 29))

        projection = compute_occurrences(insurance, make_month_window(2025, 2))

        assert projection.due_dates == [date(2025, 2, 28)]

    def test_semimonthly_step_is_fifteen_days(self):
        """Частота SEMIMONTHLY - шаг 15 дней."""
        assert compute_due_dates(
            date(2025, 1, 1), Frequency.SEMIMONTHLY, date(2025, 1, 1), date(2025, 1, 31)
        ) == [date(2025, 1, 1), date(2025, 1, 16), date(2025, 1, 31)]

    def test_inactive_obligation_has_no_occurrences(self):
        """Неактивное обязательство даёт (0, [], 0)."""
        bill = make_obligation(is_active=False)

        projection = compute_occurrences(bill, make_month_window(2025, 1))

        assert projection.count == 0
        assert projection.due_dates == []
        assert projection.total_expected_amount == Decimal("0.00")

    def test_missing_frequency_is_rejected(self):
        """Активное обязательство без частоты отвергается."""
        broken = make_obligation(frequency=None)

        with pytest.raises(InvalidObligationError):
            compute_occurrences(broken, make_month_window(2025, 1))

    def test_missing_reference_date_is_rejected(self):
        """Активное обязательство без опорной даты отвергается."""
        broken = make_obligation(reference_date=None)

        with pytest.raises(InvalidObligationError):
            validate_obligation_schedule(broken)

    def test_inactive_obligation_without_schedule_is_allowed(self):
        """Неактивное обязательство без расписания не считается ошибкой."""
        projection = compute_occurrences(make_obligation(frequency=None, is_active=False), make_month_window(2025, 1))

        assert projection.count == 0

    def test_reversed_range_raises(self):
        """Диапазон с началом позже конца - ValueError."""
        with pytest.raises(ValueError):
            compute_due_dates(date(2025, 1, 1), Frequency.WEEKLY, date(2025, 2, 1), date(2025, 1, 1))


class TestProjection:
    """Проекция обязательства на окно."""

    def test_project_period_record_initial_state(self):
        """Новая запись: все вхождения не оплачены, итоги рассчитаны."""
        bill = make_obligation(frequency=Frequency.WEEKLY, reference_date=date(2025, 1, 6), amount=Decimal("50.00"))
        window = make_month_window(2025, 1)

        record = project_period_record(bill, window, date(2024, 12, 1))

        assert record.occurrence_count == 4
        assert record.occurrence_paid_flags == [False] * 4
        assert record.occurrence_transaction_ids == [None] * 4
        assert record.occurrence_amounts == [Decimal("0.00")] * 4
        assert record.total_amount_due == Decimal("200.00")
        assert record.total_amount_unpaid == Decimal("200.00")
        assert record.total_amount_paid == Decimal("0.00")
        assert record.next_unpaid_due_date == date(2025, 1, 6)
        assert record.status == OutflowPeriodStatus.PENDING.value
        assert record.period_start == window.start_date
        assert record.granularity == PeriodGranularity.MONTHLY

    def test_calculate_withholding_monthly(self):
        """Дневная ставка ежемесячного обязательства считается от 30 дней."""
        cycle_days, daily_rate, withheld = calculate_withholding(
            Decimal("100.00"), Frequency.MONTHLY, make_month_window(2025, 1)
        )

        assert cycle_days == 30
        assert daily_rate == Decimal("3.3333")
        assert withheld == Decimal("103.33")


class TestOccurrenceProperties:
    """
    Property-based тесты калькулятора вхождений.
    """

    # Property 1: Длины массивов вхождений согласованы
    @given(obligation=obligations(), window=catalog_windows())
    @settings(max_examples=100, deadline=None)
    def test_property_1_projection_is_consistent(self, obligation, window):
        """
        Property 1: Согласованность проекции.

        Инвариант: count == len(due_dates); все даты внутри окна и строго
        возрастают; ожидаемая сумма равна count * |amount|.
        """
        projection = compute_occurrences(obligation, window)

        assert projection.count == len(projection.due_dates)
        assert all(window.start_date <= d <= window.end_date for d in projection.due_dates)
        assert all(b > a for a, b in zip(projection.due_dates, projection.due_dates[1:]))
        assert projection.total_expected_amount == (obligation.amount * projection.count).quantize(Decimal("0.01"))

    # Property 2: Недельное обязательство в 31-дневном месяце
    @given(reference_date=reference_dates(), month=st.sampled_from([1, 3, 5, 7, 8, 10, 12]))
    @settings(max_examples=100, deadline=None)
    def test_property_2_weekly_in_31_day_month(self, reference_date, month):
        """
        Property 2: Недельное обязательство в 31-дневном окне.

        Инвариант: 4 или 5 вхождений.
        """
        weekly = make_obligation(frequency=Frequency.WEEKLY, reference_date=reference_date)

        projection = compute_occurrences(weekly, make_month_window(2025, month))

        assert projection.count in (4, 5)

    # Property 3: Ежемесячное обязательство - ровно одно вхождение в месяце
    @given(reference_date=reference_dates(), window=catalog_windows(PeriodGranularity.MONTHLY))
    @settings(max_examples=100, deadline=None)
    def test_property_3_monthly_once_per_month(self, reference_date, window):
        """
        Property 3: Ежемесячное обязательство.

        Инвариант: в каждом календарном месяце ровно одно вхождение, а его
        день равен опорному дню или последнему дню короткого месяца.
        """
        monthly = make_obligation(frequency=Frequency.MONTHLY, reference_date=reference_date)

        projection = compute_occurrences(monthly, window)

        assert projection.count == 1
        due = projection.due_dates[0]
        assert due.day == reference_date.day or due.day == window.end_date.day

    # Property 4: Полумесячное обязательство в окне половины месяца
    @given(reference_date=reference_dates(), window=catalog_windows(PeriodGranularity.BI_MONTHLY))
    @settings(max_examples=100, deadline=None)
    def test_property_4_semimonthly_in_half_month(self, reference_date, window):
        """
        Property 4: Полумесячное обязательство в окне половины месяца.

        Инвариант: в окне от 15 дней 1 или 2 вхождения; во второй половине
        февраля (13-14 дней) при шаге 15 дней возможно 0 или 1.
        """
        semimonthly = make_obligation(frequency=Frequency.SEMIMONTHLY, reference_date=reference_date)

        projection = compute_occurrences(semimonthly, window)

        if window.days >= 15:
            assert projection.count in (1, 2)
        else:
            assert projection.count in (0, 1)

    # Property 5: Разбиение диапазона не меняет набор дат
    @given(
        obligation=obligations(),
        start=st.dates(min_value=date(2025, 1, 1), max_value=date(2025, 6, 30)),
        length=st.integers(min_value=2, max_value=120),
        split=st.integers(min_value=1, max_value=119),
    )
    @settings(max_examples=100, deadline=None)
    def test_property_5_split_ranges_are_additive(self, obligation, start, length, split):
        """
        Property 5: Аддитивность по смежным окнам.

        Инвариант: даты в [a, c] = даты в [a, b] + даты в [b+1, c].
        """
        split = min(split, length - 1)
        end = start + timedelta(days=length - 1)
        middle = start + timedelta(days=split - 1)

        whole = compute_due_dates(obligation.reference_date, obligation.frequency, start, end)
        left = compute_due_dates(obligation.reference_date, obligation.frequency, start, middle)
        right = compute_due_dates(
            obligation.reference_date, obligation.frequency, middle + timedelta(days=1), end
        )

        assert whole == left + right

    # Property 6: Неактивное обязательство
    @given(obligation=obligations(active=False), window=catalog_windows())
    @settings(max_examples=50, deadline=None)
    def test_property_6_inactive_is_empty(self, obligation, window):
        """
        Property 6: Неактивное обязательство не имеет вхождений ни в одном окне.
        """
        projection = compute_occurrences(obligation, window)

        assert projection.count == 0
        assert projection.total_expected_amount == Decimal("0.00")
