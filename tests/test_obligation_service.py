"""
Тесты сервиса обязательств: создание с заполнением горизонта, выборка,
изменение и ошибки валидации.
"""

import uuid
import pytest
from datetime import date
from decimal import Decimal

from pydantic import ValidationError

from obligation_tracker.models import (
    Frequency,
    ObligationCreate,
    ObligationUpdate,
    PeriodGranularity,
    PeriodRecordDB,
    TransactionCreate,
)
from obligation_tracker.services.obligation_service import (
    create_obligation,
    edit_obligation,
    get_obligations,
    seed_period_records,
)
from obligation_tracker.services.period_record_service import get_period_status, get_records_for_obligation
from obligation_tracker.services.transaction_service import create_transaction
from obligation_tracker.utils.exceptions import BusinessLogicError, ObligationNotFoundError

from test_factories import create_test_obligation


NOW = date(2025, 1, 20)
OWNER_ID = str(uuid.uuid4())


def _rent_data(**overrides):
    data = {
        "owner_id": OWNER_ID,
        "frequency": Frequency.MONTHLY,
        "reference_date": date(2025, 1, 1),
        "amount": Decimal("1000.00"),
        "custom_name": "Аренда",
    }
    data.update(overrides)
    return ObligationCreate(**data)


class TestCreateObligation:
    """Создание обязательств."""

    def test_create_without_horizon(self, db_session):
        """Без горизонта записи периодов не создаются."""
        obligation = create_obligation(db_session, _rent_data())

        assert obligation.id is not None
        assert obligation.transaction_ids == []
        assert get_records_for_obligation(db_session, obligation.id) == []

    def test_create_with_horizon_seeds_all_views(self, db_session):
        """Январский горизонт: месяц, две половины и пять недель."""
        obligation = create_obligation(
            db_session, _rent_data(), now=NOW, horizon=(date(2025, 1, 1), date(2025, 1, 31))
        )

        records = get_records_for_obligation(db_session, obligation.id)
        by_granularity = {g: [r for r in records if r.granularity == g] for g in PeriodGranularity}
        assert len(by_granularity[PeriodGranularity.MONTHLY]) == 1
        assert len(by_granularity[PeriodGranularity.BI_MONTHLY]) == 2
        assert len(by_granularity[PeriodGranularity.WEEKLY]) == 5

        january = get_period_status(db_session, obligation.id, "2025M01")
        assert january.occurrence_due_dates == [date(2025, 1, 1)]
        assert january.total_amount_due == Decimal("1000.00")
        assert get_period_status(db_session, obligation.id, "2025W0105").occurrence_count == 0

    def test_seed_is_idempotent(self, db_session):
        """Повторное заполнение того же горизонта не создаёт дубликатов."""
        horizon = (date(2025, 1, 1), date(2025, 1, 31))
        obligation = create_obligation(db_session, _rent_data(), now=NOW, horizon=horizon)

        results = seed_period_records(db_session, obligation.id, horizon, NOW)

        assert all(r.success for r in results)
        assert db_session.query(PeriodRecordDB).count() == 8

    def test_seed_reversed_horizon(self, db_session):
        """Горизонт с началом позже конца - ValueError."""
        obligation = create_obligation(db_session, _rent_data())

        with pytest.raises(ValueError):
            seed_period_records(db_session, obligation.id, (date(2025, 2, 1), date(2025, 1, 1)), NOW)

    @pytest.mark.parametrize("overrides", [
        {"owner_id": "not-a-uuid"},
        {"amount": Decimal("0")},
        {"amount": Decimal("-5.00")},
    ])
    def test_invalid_data_rejected(self, overrides):
        """Некорректный владелец или сумма не проходят валидацию."""
        with pytest.raises(ValidationError):
            _rent_data(**overrides)


class TestGetObligations:
    """Выборка обязательств."""

    def test_filters(self, db_session):
        """Фильтрация по владельцу и активности."""
        other_owner = str(uuid.uuid4())
        db_session.add_all([
            create_test_obligation(owner_id=OWNER_ID, custom_name="Аренда"),
            create_test_obligation(owner_id=OWNER_ID, custom_name="Старый кредит", is_active=False),
            create_test_obligation(owner_id=other_owner, custom_name="Чужое"),
        ])
        db_session.commit()

        assert len(get_obligations(db_session)) == 3
        assert len(get_obligations(db_session, owner_id=OWNER_ID)) == 2
        active = get_obligations(db_session, owner_id=OWNER_ID, active_only=True)
        assert [o.custom_name for o in active] == ["Аренда"]


class TestEditObligationErrors:
    """Ошибки изменения обязательства."""

    def test_unknown_obligation(self, db_session):
        """Несуществующее обязательство - ObligationNotFoundError."""
        with pytest.raises(ObligationNotFoundError):
            edit_obligation(db_session, str(uuid.uuid4()), ObligationUpdate(custom_name="X"), NOW)

    def test_invalid_id_format(self, db_session):
        """ID не в формате UUID - ValueError."""
        with pytest.raises(ValueError):
            edit_obligation(db_session, "rent", ObligationUpdate(custom_name="X"), NOW)

    def test_foreign_transaction_rolls_back(self, db_session, rent_obligation):
        """Чужая транзакция в списке отменяет всё изменение."""
        other = create_test_obligation(custom_name="Интернет")
        db_session.add(other)
        db_session.commit()
        txn = create_transaction(db_session, TransactionCreate(
            amount=Decimal("-100.00"), transaction_date=date(2025, 1, 2)
        ))
        txn.obligation_id = other.id
        db_session.commit()

        with pytest.raises(BusinessLogicError):
            edit_obligation(
                db_session, rent_obligation.id,
                ObligationUpdate(custom_name="Аренда офиса", transaction_ids=[txn.id]), NOW
            )

        db_session.refresh(rent_obligation)
        assert rent_obligation.custom_name == "Аренда"
        assert rent_obligation.transaction_ids == []
        assert txn.obligation_id == other.id
