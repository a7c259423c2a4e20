"""
Модуль моделей данных для Obligation Tracker.

Содержит определения моделей:
- ObligationDB: периодическое обязательство (счёт к оплате или ожидаемый доход)
- PeriodWindowDB: окно календарного разбиения (месяц, неделя, половина месяца)
- PeriodRecordDB: материализованное состояние обязательства внутри окна
- TransactionDB: фактическая транзакция
- Pydantic модели для валидации, чтения и результатов движка сверки
"""

from datetime import datetime
from datetime import date as date_type
from typing import Dict, List, Optional
from decimal import Decimal
import uuid

from sqlalchemy import (
    Column, Integer, String, Numeric, Date, DateTime, Enum as SQLEnum, Boolean,
    ForeignKey, Index, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship, DeclarativeBase
from pydantic import BaseModel, field_validator, Field, ConfigDict, computed_field

from .enums import (
    TransactionType, Frequency, PeriodGranularity, PaymentType, OutflowPeriodStatus
)

# Декларативная база для SQLAlchemy моделей
class Base(DeclarativeBase):
    """Базовый класс для всех SQLAlchemy моделей."""
    pass


class ObligationDB(Base):
    """
    Периодическое обязательство: регулярный счёт или ожидаемое поступление.

    Attributes:
        id: Уникальный идентификатор обязательства (UUID)
        owner_id: Идентификатор владельца (UUID)
        type: Направление (EXPENSE - платёж, INCOME - поступление)
        frequency: Частота повторения (может отсутствовать у некорректных записей)
        reference_date: Опорная дата (последнее или следующее известное вхождение)
        amount: Сумма одного вхождения
        is_active: Признак активности (деактивация вместо удаления)
        custom_name: Пользовательское название
        description: Описание
        transaction_ids: Список ID транзакций, привязанных к обязательству (JSON)
        created_at: Дата создания записи
        updated_at: Дата последнего обновления
    """
    __tablename__ = "obligations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    owner_id = Column(String(36), nullable=False, index=True)
    type = Column(SQLEnum(TransactionType), nullable=False, default=TransactionType.EXPENSE)
    frequency = Column(SQLEnum(Frequency), nullable=True)
    reference_date = Column(Date, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    custom_name = Column(String, nullable=True)
    description = Column(String, nullable=True)
    transaction_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Связи
    period_records = relationship("PeriodRecordDB", back_populates="obligation")
    transactions = relationship("TransactionDB", back_populates="obligation")


class PeriodWindowDB(Base):
    """
    Окно календарного разбиения.

    Неизменяемый диапазон дат [start_date, end_date] (включительно) одной
    гранулярности. Окна одной гранулярности не пересекаются.

    Attributes:
        id: Стабильный идентификатор окна (например, 2025M01, 2025BM01A, 2024W1229)
        granularity: Гранулярность (месяц, неделя, половина месяца)
        start_date: Первый день окна
        end_date: Последний день окна
        year: Год, к которому относится окно
        created_at: Дата создания записи
    """
    __tablename__ = "period_windows"

    id = Column(String(32), primary_key=True)
    granularity = Column(SQLEnum(PeriodGranularity), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    year = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    # Связи
    period_records = relationship("PeriodRecordDB", back_populates="window")

    # Индекс для запросов по диапазону дат
    __table_args__ = (
        Index('ix_period_windows_granularity_start_end', 'granularity', 'start_date', 'end_date'),
    )


class PeriodRecordDB(Base):
    """
    Материализованное состояние обязательства внутри одного окна.

    Массивы occurrence_* выровнены по индексу и всегда имеют длину occurrence_count.
    Поля итогов пересчитываются движком целиком из массивов вхождений.

    Attributes:
        id: Уникальный идентификатор записи (UUID)
        obligation_id: Ссылка на обязательство (UUID)
        window_id: Ссылка на окно периода
        granularity: Гранулярность окна
        obligation_type: Направление обязательства (копия из обязательства)
        owner_id: Владелец (копия из обязательства)
        custom_name: Название (копия из обязательства)
        is_active: Активность обязательства на момент расчёта
        period_start: Начало окна
        period_end: Конец окна
        amount_per_occurrence: Сумма одного вхождения
        cycle_days: Длина цикла в днях для расчёта дневной ставки
        daily_rate: Дневная ставка (amount_per_occurrence / cycle_days)
        amount_withheld: Сумма, резервируемая за окно по дневной ставке
        occurrence_count: Количество вхождений в окне
        occurrence_due_dates: Даты вхождений (JSON, ISO строки)
        occurrence_paid_flags: Признаки оплаты вхождений (JSON)
        occurrence_transaction_ids: ID транзакций, закрывших вхождения (JSON)
        occurrence_amounts: Фактические суммы по вхождениям (JSON, строки)
        occurrence_payment_types: Классификация платежей по вхождениям (JSON)
        transaction_ids: Дедуплицированный список сопоставленных транзакций (JSON)
        assigned_transaction_ids: Транзакции, вручную назначенные на период (JSON)
        occurrences_paid: Количество оплаченных вхождений
        total_amount_due: Ожидаемая сумма за окно
        total_amount_paid: Фактически оплачено
        total_amount_unpaid: Остаток к оплате
        total_amount_overpaid: Переплата сверх ожидаемой суммы
        is_fully_paid: Все вхождения оплачены
        is_partially_paid: Оплачена часть вхождений
        status: Статус периода (OutflowPeriodStatus или InflowPeriodStatus)
        next_unpaid_due_date: Ближайшая дата неоплаченного вхождения
        version: Версия записи для обнаружения конкурентных изменений
        created_at: Дата создания записи
        updated_at: Метка последнего изменения
    """
    __tablename__ = "period_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    obligation_id = Column(String(36), ForeignKey("obligations.id"), nullable=False)
    window_id = Column(String(32), ForeignKey("period_windows.id"), nullable=False)
    granularity = Column(SQLEnum(PeriodGranularity), nullable=False)
    obligation_type = Column(SQLEnum(TransactionType), nullable=False)
    owner_id = Column(String(36), nullable=False)
    custom_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    amount_per_occurrence = Column(Numeric(12, 2), nullable=False)
    cycle_days = Column(Integer, nullable=False)
    daily_rate = Column(Numeric(12, 4), nullable=False)
    amount_withheld = Column(Numeric(12, 2), nullable=False)
    occurrence_count = Column(Integer, nullable=False, default=0)
    occurrence_due_dates = Column(JSON, nullable=False, default=list)
    occurrence_paid_flags = Column(JSON, nullable=False, default=list)
    occurrence_transaction_ids = Column(JSON, nullable=False, default=list)
    occurrence_amounts = Column(JSON, nullable=False, default=list)
    occurrence_payment_types = Column(JSON, nullable=False, default=list)
    transaction_ids = Column(JSON, nullable=False, default=list)
    assigned_transaction_ids = Column(JSON, nullable=False, default=list)
    occurrences_paid = Column(Integer, nullable=False, default=0)
    total_amount_due = Column(Numeric(12, 2), nullable=False)
    total_amount_paid = Column(Numeric(12, 2), nullable=False)
    total_amount_unpaid = Column(Numeric(12, 2), nullable=False)
    total_amount_overpaid = Column(Numeric(12, 2), nullable=False)
    is_fully_paid = Column(Boolean, default=False)
    is_partially_paid = Column(Boolean, default=False)
    status = Column(String(20), nullable=False)
    next_unpaid_due_date = Column(Date, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    # Связи
    obligation = relationship("ObligationDB", back_populates="period_records")
    window = relationship("PeriodWindowDB", back_populates="period_records")

    # Версионирование: конкурентная запись вызывает StaleDataError
    __mapper_args__ = {"version_id_col": version}

    # Индексы для производительности
    __table_args__ = (
        UniqueConstraint('obligation_id', 'window_id', name='uq_period_records_obligation_window'),
        Index('ix_period_records_obligation_granularity', 'obligation_id', 'granularity'),
        Index('ix_period_records_window_id', 'window_id'),
    )


class TransactionDB(Base):
    """
    Фактическая финансовая транзакция.

    Транзакция неизменяема после установки даты; изменяется только привязка
    к обязательству. Привязка эксклюзивна: транзакция принадлежит не более
    чем одному обязательству.

    Attributes:
        id: Уникальный идентификатор транзакции (UUID)
        amount: Сумма со знаком (перед сопоставлением берётся модуль)
        transaction_date: Дата совершения транзакции
        description: Описание транзакции (необязательное)
        obligation_id: Ссылка на обязательство (UUID) или None
        created_at: Дата создания записи
        updated_at: Дата последнего обновления
    """
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    transaction_date = Column(Date, nullable=False, index=True)
    description = Column(String)
    obligation_id = Column(String(36), ForeignKey("obligations.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Связи
    obligation = relationship("ObligationDB", back_populates="transactions")

    # Индексы для быстрого поиска
    __table_args__ = (
        Index('ix_transactions_obligation_id_date', 'obligation_id', 'transaction_date'),
    )


# =============================================================================
# Pydantic модели для валидации и чтения
# =============================================================================

def _check_uuid(v: str) -> str:
    try:
        uuid.UUID(v)
        return v
    except ValueError:
        raise ValueError(f'Невалидный UUID: {v}')


class ObligationCreate(BaseModel):
    """
    Pydantic модель для создания обязательства с валидацией.

    Обеспечивает валидацию данных при создании:
    - Проверяет формат owner_id
    - Проверяет, что сумма вхождения положительная
    - Требует частоту и опорную дату

    Attributes:
        owner_id: ID владельца (UUID)
        type: Направление (доход или расход)
        frequency: Частота повторения
        reference_date: Опорная дата вхождения
        amount: Сумма одного вхождения (больше 0)
        custom_name: Пользовательское название
        description: Описание
        is_active: Признак активности
    """
    owner_id: str
    type: TransactionType = TransactionType.EXPENSE
    frequency: Frequency
    reference_date: date_type
    amount: Decimal = Field(gt=Decimal('0'), description="Сумма вхождения должна быть положительной")
    custom_name: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True

    @field_validator('owner_id')
    @classmethod
    def validate_uuid(cls, v: str) -> str:
        """Валидация формата UUID."""
        return _check_uuid(v)


class ObligationUpdate(BaseModel):
    """
    Pydantic модель для изменения обязательства.

    Все поля опциональные - обновляются только указанные.
    """
    amount: Optional[Decimal] = Field(None, gt=Decimal('0'))
    custom_name: Optional[str] = None
    frequency: Optional[Frequency] = None
    reference_date: Optional[date_type] = None
    is_active: Optional[bool] = None
    transaction_ids: Optional[List[str]] = None


class Obligation(BaseModel):
    """
    Pydantic модель для чтения обязательства из базы данных.

    Частота и опорная дата допускают None: такие записи считаются
    некорректными и отвергаются калькулятором вхождений.
    """
    id: str
    owner_id: str
    type: TransactionType = TransactionType.EXPENSE
    frequency: Optional[Frequency] = None
    reference_date: Optional[date_type] = None
    amount: Decimal
    is_active: bool = True
    custom_name: Optional[str] = None
    description: Optional[str] = None
    transaction_ids: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PeriodWindow(BaseModel):
    """
    Pydantic модель окна периода.

    Attributes:
        id: Идентификатор окна
        granularity: Гранулярность
        start_date: Первый день окна
        end_date: Последний день окна (включительно)
        year: Год окна
    """
    id: str
    granularity: PeriodGranularity
    start_date: date_type
    end_date: date_type
    year: int

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def days(self) -> int:
        """Количество дней в окне (включительно)."""
        return (self.end_date - self.start_date).days + 1

    def contains(self, value: date_type) -> bool:
        """Проверяет, попадает ли дата в окно."""
        return self.start_date <= value <= self.end_date


class TransactionCreate(BaseModel):
    """
    Pydantic модель для создания транзакции.

    Attributes:
        amount: Сумма со знаком (не может быть нулевой)
        transaction_date: Дата транзакции
        description: Необязательное описание
    """
    amount: Decimal
    transaction_date: date_type = Field(default_factory=date_type.today)
    description: Optional[str] = None

    @field_validator('amount')
    @classmethod
    def amount_not_zero(cls, v: Decimal) -> Decimal:
        """Сумма транзакции не может быть нулевой."""
        if v == 0:
            raise ValueError('Сумма транзакции не может быть нулевой')
        return v


class Transaction(TransactionCreate):
    """
    Pydantic модель для чтения транзакции из базы данных.

    Добавляет поля, которые генерируются автоматически:
    - id
    - obligation_id
    - created_at
    - updated_at
    """
    id: str
    obligation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PeriodRecord(BaseModel):
    """
    Pydantic модель записи периода.

    Рабочее значение движка: чистые функции сопоставления и расчёта статуса
    принимают и возвращают PeriodRecord, не обращаясь к БД.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    obligation_id: str
    window_id: str
    granularity: PeriodGranularity
    obligation_type: TransactionType
    owner_id: str
    custom_name: Optional[str] = None
    is_active: bool = True
    period_start: date_type
    period_end: date_type
    amount_per_occurrence: Decimal
    cycle_days: int
    daily_rate: Decimal
    amount_withheld: Decimal
    occurrence_count: int = 0
    occurrence_due_dates: List[date_type] = Field(default_factory=list)
    occurrence_paid_flags: List[bool] = Field(default_factory=list)
    occurrence_transaction_ids: List[Optional[str]] = Field(default_factory=list)
    occurrence_amounts: List[Decimal] = Field(default_factory=list)
    occurrence_payment_types: List[Optional[PaymentType]] = Field(default_factory=list)
    transaction_ids: List[str] = Field(default_factory=list)
    assigned_transaction_ids: List[str] = Field(default_factory=list)
    occurrences_paid: int = 0
    total_amount_due: Decimal = Decimal('0.00')
    total_amount_paid: Decimal = Decimal('0.00')
    total_amount_unpaid: Decimal = Decimal('0.00')
    total_amount_overpaid: Decimal = Decimal('0.00')
    is_fully_paid: bool = False
    is_partially_paid: bool = False
    status: str = OutflowPeriodStatus.PENDING.value
    next_unpaid_due_date: Optional[date_type] = None
    version: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_outflow(self) -> bool:
        """Запись относится к обязательному платежу."""
        return self.obligation_type == TransactionType.EXPENSE

    @property
    def is_settled(self) -> bool:
        """Есть хотя бы одно оплаченное вхождение."""
        return any(self.occurrence_paid_flags)


# =============================================================================
# Результаты движка сверки
# =============================================================================

class OccurrenceProjection(BaseModel):
    """
    Результат расчёта вхождений обязательства в окне.

    Attributes:
        count: Количество вхождений
        due_dates: Даты вхождений в порядке возрастания
        total_expected_amount: count * |amount|
    """
    count: int
    due_dates: List[date_type]
    total_expected_amount: Decimal


class MatchResult(BaseModel):
    """
    Результат сопоставления транзакций с вхождениями одной записи.

    Attributes:
        record: Обновлённая запись периода
        matched_count: Количество сопоставленных транзакций
        unmatched_ids: ID транзакций, не сопоставленных в этом периоде
    """
    record: PeriodRecord
    matched_count: int = 0
    unmatched_ids: List[str] = Field(default_factory=list)


class LedgerEntry(BaseModel):
    """Оплата одного вхождения: транзакция, сумма и тип платежа."""
    transaction_id: str
    amount: Decimal
    payment_type: Optional[PaymentType] = None


class OccurrenceLedger(BaseModel):
    """
    Единый реестр оплат вхождений обязательства.

    Ключ - дата вхождения. Каждая транзакция занимает не больше одного
    вхождения; записи периодов всех гранулярностей получают свои слоты
    из реестра по датам вхождений.
    """
    obligation_id: str
    entries: Dict[date_type, LedgerEntry] = Field(default_factory=dict)

    def due_date_of(self, transaction_id: str) -> Optional[date_type]:
        """Дата вхождения, которое занимает транзакция, или None."""
        for due, entry in self.entries.items():
            if entry.transaction_id == transaction_id:
                return due
        return None

    @property
    def placed_ids(self) -> List[str]:
        return [entry.transaction_id for _, entry in sorted(self.entries.items())]


class PaymentBreakdown(BaseModel):
    """
    Разбивка оплаченной суммы периода по типам платежей.
    """
    regular: Decimal = Decimal('0.00')
    advance: Decimal = Decimal('0.00')
    catch_up: Decimal = Decimal('0.00')
    extra_principal: Decimal = Decimal('0.00')

    @computed_field
    @property
    def total_excluding_extra(self) -> Decimal:
        """Сумма, засчитываемая в погашение ожидаемой суммы."""
        return self.regular + self.advance + self.catch_up


class TransactionEventPayload(BaseModel):
    """Данные событий TRANSACTION_ADDED / TRANSACTION_REMOVED."""
    transaction_id: str


class ObligationEditedPayload(BaseModel):
    """Данные события OBLIGATION_EDITED: состояние до и после изменения."""
    before: Obligation
    after: Obligation


class WindowCreatedPayload(BaseModel):
    """Данные события WINDOW_CREATED: окна, появившиеся в каталоге."""
    window_ids: List[str] = Field(min_length=1)


class GranularityResult(BaseModel):
    """
    Результат обработки события для одной гранулярности.

    Attributes:
        granularity: Гранулярность
        success: Пакет зафиксирован (или фиксировать было нечего)
        records_written: Количество записанных записей периода
        attempts: Количество попыток фиксации
        error: Текст ошибки при неуспехе
    """
    granularity: PeriodGranularity
    success: bool = True
    records_written: int = 0
    attempts: int = 0
    error: Optional[str] = None


class EventResult(BaseModel):
    """
    Сводный результат обработки события координатором.

    Позволяет вызывающей стороне повторить обработку только для
    неуспешных гранулярностей.
    """
    obligation_id: str
    event_kind: str
    granularities: List[GranularityResult] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        """Все гранулярности обработаны успешно."""
        return all(g.success for g in self.granularities)

    @property
    def failed_granularities(self) -> List[PeriodGranularity]:
        """Гранулярности, которые нужно обработать повторно."""
        return [g.granularity for g in self.granularities if not g.success]

    def for_granularity(self, granularity: PeriodGranularity) -> Optional[GranularityResult]:
        """Результат для конкретной гранулярности."""
        for item in self.granularities:
            if item.granularity == granularity:
                return item
        return None


class RecalculationResult(BaseModel):
    """
    Результат инкрементального пересчёта после изменения обязательства.

    Attributes:
        periods_queried: Всего записей периодов обязательства
        periods_updated: Изменено записей
        periods_skipped: Пропущено (оплаченные при изменении суммы и т.п.)
        fields_updated: Имена изменённых полей обязательства
        granularities: Результаты фиксации по гранулярностям
    """
    obligation_id: str
    periods_queried: int = 0
    periods_updated: int = 0
    periods_skipped: int = 0
    fields_updated: List[str] = Field(default_factory=list)
    granularities: List[GranularityResult] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        """Все гранулярности зафиксированы успешно."""
        return all(g.success for g in self.granularities)


class ObligationSummary(BaseModel):
    """
    Агрегированная сводка по записям периодов.

    Attributes:
        expected: Ожидаемая сумма
        paid: Фактически оплачено / получено
        unpaid: Остаток
        overpaid: Переплата
        pending_count: Количество периодов с остатком к оплате
        period_count: Количество учтённых периодов
    """
    expected: Decimal = Decimal('0.00')
    paid: Decimal = Decimal('0.00')
    unpaid: Decimal = Decimal('0.00')
    overpaid: Decimal = Decimal('0.00')
    pending_count: int = 0
    period_count: int = 0

    @computed_field
    @property
    def received(self) -> Decimal:
        """Синоним paid для поступлений."""
        return self.paid


class TriViewConsistencyReport(BaseModel):
    """
    Проверка согласованности трёх представлений одного обязательства.

    Attributes:
        totals: Сумма total_amount_paid по каждой гранулярности
        period_counts: Количество записей по каждой гранулярности
        tolerance: Допустимое расхождение
        is_consistent: Все суммы совпадают в пределах допуска
    """
    obligation_id: str
    totals: dict
    period_counts: dict
    tolerance: Decimal
    is_consistent: bool
