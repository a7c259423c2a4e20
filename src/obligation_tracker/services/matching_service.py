"""
Сервис сопоставления транзакций с вхождениями периода.

Содержит функции для:
- Поиска ближайшего вхождения для транзакции (с допусками 14/30 дней)
- Классификации платежа (обычный, авансовый, просроченный, сверхплатёж)
- Сопоставления набора транзакций с записью периода (идемпотентно)
- Отвязки транзакции от записи
- Ведения реестра оплат обязательства (OccurrenceLedger) и переноса
  его в записи периодов всех гранулярностей
- Проверки инвариантов записи периода

Правило для уже оплаченного вхождения: если ближайшим подходящим вхождением
оказалось вхождение, закрытое другой транзакцией, новая транзакция
отклоняется (остаётся не сопоставленной). Суммы двух транзакций в одном
слоте никогда не складываются и не перезаписываются.

Реестр хранит одно вхождение на транзакцию, выбранное по расписанию
обязательства, а не по окну, в которое попала дата транзакции. Поэтому
месяц, неделя и половина месяца показывают одну и ту же оплату в окнах,
содержащих дату вхождения.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Set, Tuple, Union

from obligation_tracker.config import settings
from obligation_tracker.models import (
    LedgerEntry,
    MatchResult,
    OccurrenceLedger,
    PaymentType,
    PeriodGranularity,
    PeriodRecord,
    Transaction,
)
from obligation_tracker.services.status_service import refresh_derived_fields
from obligation_tracker.utils.exceptions import NoMatchingOccurrenceError
from obligation_tracker.utils.money import ZERO, to_money

# Настройка логирования
logger = logging.getLogger(__name__)


def find_matching_occurrence_index(
    transaction_date: date,
    due_dates: Sequence[date],
    paid_flags: Sequence[bool]
) -> Optional[int]:
    """
    Находит индекс вхождения для транзакции.

    Сначала ближайшее неоплаченное вхождение в пределах
    unpaid_match_tolerance_days (14 дней), иначе ближайшее вхождение
    вообще в пределах any_match_tolerance_days (30 дней).
    При равном расстоянии выбирается более раннее вхождение.

    Args:
        transaction_date: Дата транзакции
        due_dates: Даты вхождений периода
        paid_flags: Признаки оплаты вхождений

    Returns:
        Индекс вхождения или None, если ни одно не подходит

    Example:
        >>> find_matching_occurrence_index(date(2025, 1, 16), [date(2025, 1, 3), date(2025, 1, 17)], [True, False])
        1
    """
    best_unpaid: Optional[Tuple[int, int]] = None
    best_any: Optional[Tuple[int, int]] = None

    for index, due in enumerate(due_dates):
        distance = abs((transaction_date - due).days)
        if not paid_flags[index] and (best_unpaid is None or distance < best_unpaid[1]):
            best_unpaid = (index, distance)
        if best_any is None or distance < best_any[1]:
            best_any = (index, distance)

    if best_unpaid is not None and best_unpaid[1] <= settings.unpaid_match_tolerance_days:
        return best_unpaid[0]
    if best_any is not None and best_any[1] <= settings.any_match_tolerance_days:
        return best_any[0]
    return None


def classify_payment_type(
    amount: Decimal,
    transaction_date: date,
    due_date: date,
    expected_amount: Decimal
) -> PaymentType:
    """
    Классифицирует платёж относительно сопоставленного вхождения.

    Порядок проверок:
    1. Сумма больше ожидаемой более чем на extra_principal_tolerance -> EXTRA_PRINCIPAL
    2. Платёж более чем за advance_payment_days до срока -> ADVANCE
    3. Платёж после срока -> CATCH_UP
    4. Иначе -> REGULAR

    Классификация не влияет на выбор вхождения.
    """
    tolerance = Decimal(str(settings.extra_principal_tolerance))
    if expected_amount > 0 and abs(amount) > expected_amount * (1 + tolerance):
        return PaymentType.EXTRA_PRINCIPAL
    if transaction_date < due_date - timedelta(days=settings.advance_payment_days):
        return PaymentType.ADVANCE
    if transaction_date > due_date:
        return PaymentType.CATCH_UP
    return PaymentType.REGULAR


def match_transactions(
    transactions: Iterable[Transaction],
    record: PeriodRecord,
    now: Union[date, datetime, None] = None
) -> MatchResult:
    """
    Сопоставляет транзакции с вхождениями записи периода.

    Транзакции, уже закрывающие вхождение этой записи, пропускаются, поэтому
    повторный вызов с тем же набором даёт идентичную запись, а вызов с одной
    новой транзакцией меняет только её слот. Итоги и статус пересчитываются
    из полных массивов вхождений.

    Args:
        transactions: Транзакции-кандидаты
        record: Запись периода
        now: Опорная дата для расчёта статуса

    Returns:
        MatchResult: обновлённая запись, количество и ID не сопоставленных транзакций
    """
    occurrence_ids: List[Optional[str]] = list(record.occurrence_transaction_ids)
    amounts: List[Decimal] = list(record.occurrence_amounts)
    payment_types: List[Optional[PaymentType]] = list(record.occurrence_payment_types)
    references: List[str] = list(record.transaction_ids)
    paid_flags = [tid is not None for tid in occurrence_ids]
    already_matched = {tid for tid in occurrence_ids if tid is not None}

    matched_count = 0
    unmatched: List[str] = []

    for txn in sorted(transactions, key=lambda t: (t.transaction_date, t.id)):
        if txn.id in already_matched:
            continue

        index = find_matching_occurrence_index(txn.transaction_date, record.occurrence_due_dates, paid_flags)
        if index is None:
            unmatched.append(txn.id)
            logger.debug(
                str(NoMatchingOccurrenceError(txn.id, record.id, "нет вхождения в пределах допуска")),
                extra={"transaction_id": txn.id, "window_id": record.window_id}
            )
            continue

        if paid_flags[index]:
            unmatched.append(txn.id)
            logger.warning(
                str(NoMatchingOccurrenceError(
                    txn.id, record.id,
                    f"вхождение {record.occurrence_due_dates[index]} уже оплачено транзакцией {occurrence_ids[index]}"
                )),
                extra={"transaction_id": txn.id, "window_id": record.window_id}
            )
            continue

        amount = to_money(abs(txn.amount))
        occurrence_ids[index] = txn.id
        paid_flags[index] = True
        amounts[index] = amount
        if record.is_outflow:
            payment_types[index] = classify_payment_type(
                amount, txn.transaction_date, record.occurrence_due_dates[index], record.amount_per_occurrence
            )
        else:
            payment_types[index] = None
        if txn.id not in references:
            references.append(txn.id)
        already_matched.add(txn.id)
        matched_count += 1

        logger.debug(
            f"Транзакция {txn.id} сопоставлена с вхождением {record.occurrence_due_dates[index]} "
            f"записи {record.window_id}",
            extra={"transaction_id": txn.id, "payment_type": payment_types[index]}
        )

    updated = record.model_copy(update={
        "occurrence_transaction_ids": occurrence_ids,
        "occurrence_paid_flags": paid_flags,
        "occurrence_amounts": amounts,
        "occurrence_payment_types": payment_types,
        "transaction_ids": references,
    })
    return MatchResult(
        record=refresh_derived_fields(updated, now),
        matched_count=matched_count,
        unmatched_ids=unmatched,
    )


def unassign_transaction_from_record(
    record: PeriodRecord,
    transaction_id: str,
    now: Union[date, datetime, None] = None
) -> Tuple[PeriodRecord, bool]:
    """
    Отвязывает транзакцию от записи периода.

    Очищает все слоты вхождений, закрытые транзакцией, и удаляет её
    из списка привязанных транзакций.

    Returns:
        Кортеж (обновлённая запись, была ли транзакция привязана)
    """
    referenced = (
        transaction_id in record.transaction_ids
        or transaction_id in record.occurrence_transaction_ids
    )
    if not referenced:
        return record, False

    occurrence_ids = [None if tid == transaction_id else tid for tid in record.occurrence_transaction_ids]
    updated = record.model_copy(update={
        "occurrence_transaction_ids": occurrence_ids,
        "transaction_ids": [tid for tid in record.transaction_ids if tid != transaction_id],
    })
    logger.debug(f"Транзакция {transaction_id} отвязана от записи {record.window_id}")
    return refresh_derived_fields(updated, now), True


def build_occurrence_ledger(
    obligation_id: str,
    records: Iterable[PeriodRecord],
    valid_ids: Optional[Set[str]] = None
) -> OccurrenceLedger:
    """
    Собирает реестр оплат обязательства из его записей периодов.

    Записи просматриваются по гранулярностям (месяц, неделя, половина
    месяца) и по началу окна. Для каждой даты вхождения берётся первая
    оплата; транзакция, уже занявшая другую дату, повторно не учитывается.

    Args:
        obligation_id: ID обязательства
        records: Записи периодов обязательства (любых гранулярностей)
        valid_ids: Транзакции, которые ещё принадлежат обязательству
            (None = без фильтра)

    Returns:
        OccurrenceLedger
    """
    order = {granularity: position for position, granularity in enumerate(PeriodGranularity)}
    ledger = OccurrenceLedger(obligation_id=obligation_id)
    placed: Set[str] = set()

    for record in sorted(records, key=lambda r: (order[r.granularity], r.period_start)):
        slots = zip(
            record.occurrence_due_dates,
            record.occurrence_transaction_ids,
            record.occurrence_amounts,
            record.occurrence_payment_types,
        )
        for due, transaction_id, amount, payment_type in slots:
            if transaction_id is None or due in ledger.entries or transaction_id in placed:
                continue
            if valid_ids is not None and transaction_id not in valid_ids:
                continue
            ledger.entries[due] = LedgerEntry(
                transaction_id=transaction_id,
                amount=to_money(amount),
                payment_type=payment_type,
            )
            placed.add(transaction_id)

    return ledger


def release_from_ledger(ledger: OccurrenceLedger, transaction_id: str) -> Optional[date]:
    """Освобождает вхождение транзакции в реестре; возвращает его дату или None."""
    due = ledger.due_date_of(transaction_id)
    if due is not None:
        del ledger.entries[due]
        logger.debug(f"Транзакция {transaction_id} освободила вхождение {due}")
    return due


def match_into_ledger(
    ledger: OccurrenceLedger,
    transactions: Iterable[Transaction],
    due_dates: Sequence[date],
    is_outflow: bool,
    expected_amount: Decimal
) -> List[str]:
    """
    Сопоставляет транзакции с датами расписания и заносит оплаты в реестр.

    Правила выбора те же, что у match_transactions. Кандидаты - due_dates
    вместе с уже оплаченными датами реестра. Транзакция, уже занимающая
    вхождение, пропускается; попадание в оплаченное вхождение отклоняется.
    Реестр изменяется на месте.

    Returns:
        ID не сопоставленных транзакций
    """
    unmatched: List[str] = []

    for txn in sorted(transactions, key=lambda t: (t.transaction_date, t.id)):
        if ledger.due_date_of(txn.id) is not None:
            continue

        candidates = sorted(set(due_dates) | set(ledger.entries))
        paid_flags = [due in ledger.entries for due in candidates]
        index = find_matching_occurrence_index(txn.transaction_date, candidates, paid_flags)
        if index is None:
            unmatched.append(txn.id)
            logger.debug(
                str(NoMatchingOccurrenceError(txn.id, ledger.obligation_id, "нет вхождения в пределах допуска")),
                extra={"transaction_id": txn.id, "obligation_id": ledger.obligation_id}
            )
            continue

        due = candidates[index]
        if paid_flags[index]:
            unmatched.append(txn.id)
            logger.warning(
                str(NoMatchingOccurrenceError(
                    txn.id, ledger.obligation_id,
                    f"вхождение {due} уже оплачено транзакцией {ledger.entries[due].transaction_id}"
                )),
                extra={"transaction_id": txn.id, "obligation_id": ledger.obligation_id}
            )
            continue

        amount = to_money(abs(txn.amount))
        payment_type = (
            classify_payment_type(amount, txn.transaction_date, due, expected_amount) if is_outflow else None
        )
        ledger.entries[due] = LedgerEntry(transaction_id=txn.id, amount=amount, payment_type=payment_type)
        logger.debug(
            f"Транзакция {txn.id} закрывает вхождение {due}",
            extra={"transaction_id": txn.id, "payment_type": payment_type}
        )

    return unmatched


def project_ledger(
    record: PeriodRecord,
    ledger: OccurrenceLedger,
    now: Union[date, datetime, None] = None
) -> PeriodRecord:
    """
    Переносит оплаты из реестра в слоты записи периода по датам вхождений.

    Если слоты и список транзакций записи уже совпадают с реестром,
    возвращается та же запись без пересчёта.
    """
    entries = [ledger.entries.get(due) for due in record.occurrence_due_dates]
    occurrence_ids = [entry.transaction_id if entry else None for entry in entries]
    amounts = [entry.amount if entry else ZERO for entry in entries]
    payment_types = [entry.payment_type if entry else None for entry in entries]
    references = [tid for tid in occurrence_ids if tid is not None]

    current = list(zip(
        record.occurrence_transaction_ids,
        [to_money(a) if tid is not None else ZERO
         for a, tid in zip(record.occurrence_amounts, record.occurrence_transaction_ids)],
        [pt if tid is not None else None
         for pt, tid in zip(record.occurrence_payment_types, record.occurrence_transaction_ids)],
    ))
    if current == list(zip(occurrence_ids, amounts, payment_types)) and record.transaction_ids == references:
        return record

    updated = record.model_copy(update={
        "occurrence_transaction_ids": occurrence_ids,
        "occurrence_amounts": amounts,
        "occurrence_payment_types": payment_types,
        "transaction_ids": references,
    })
    return refresh_derived_fields(updated, now)


def pin_to_record(
    ledger: OccurrenceLedger,
    record: PeriodRecord,
    transaction: Transaction,
    now: Union[date, datetime, None] = None
) -> Optional[date]:
    """
    Закрепляет транзакцию за вхождением указанной записи (ручное назначение).

    Транзакция сопоставляется только с вхождениями этой записи через
    match_transactions; вхождения, оплаченные другими транзакциями, считаются
    занятыми. При успехе прежнее вхождение транзакции освобождается, иначе
    реестр не меняется. Реестр изменяется на месте.

    Returns:
        Дата вхождения, за которым закреплена транзакция, или None
    """
    current = ledger.due_date_of(transaction.id)
    if current is not None and current in record.occurrence_due_dates:
        return current

    others = OccurrenceLedger(
        obligation_id=ledger.obligation_id,
        entries={due: entry for due, entry in ledger.entries.items() if entry.transaction_id != transaction.id},
    )
    result = match_transactions([transaction], project_ledger(record, others, now), now)
    if result.matched_count == 0:
        logger.warning(
            f"Транзакция {transaction.id} не закреплена за записью {record.window_id}, "
            f"прежнее вхождение сохранено: {current}",
            extra={"transaction_id": transaction.id, "window_id": record.window_id}
        )
        return None

    index = result.record.occurrence_transaction_ids.index(transaction.id)
    due = result.record.occurrence_due_dates[index]
    release_from_ledger(ledger, transaction.id)
    ledger.entries[due] = LedgerEntry(
        transaction_id=transaction.id,
        amount=result.record.occurrence_amounts[index],
        payment_type=result.record.occurrence_payment_types[index],
    )
    logger.info(
        f"Транзакция {transaction.id} закреплена за вхождением {due} записи {record.window_id}",
        extra={"transaction_id": transaction.id, "window_id": record.window_id}
    )
    return due


def check_record_invariants(record: PeriodRecord) -> List[str]:
    """
    Проверяет инварианты записи периода.

    Returns:
        Список описаний нарушений (пустой, если запись корректна)
    """
    violations: List[str] = []
    count = record.occurrence_count

    for name in (
        "occurrence_due_dates",
        "occurrence_paid_flags",
        "occurrence_transaction_ids",
        "occurrence_amounts",
        "occurrence_payment_types",
    ):
        if len(getattr(record, name)) != count:
            violations.append(f"длина {name} не равна occurrence_count ({count})")
    if violations:
        return violations

    for index, (paid, tid) in enumerate(zip(record.occurrence_paid_flags, record.occurrence_transaction_ids)):
        if paid != (tid is not None):
            violations.append(f"вхождение {index}: признак оплаты не соответствует транзакции")

    if any(later <= earlier for earlier, later in zip(record.occurrence_due_dates, record.occurrence_due_dates[1:])):
        violations.append("даты вхождений не возрастают строго")

    paid_total = to_money(sum(
        (amount for amount, paid in zip(record.occurrence_amounts, record.occurrence_paid_flags) if paid),
        ZERO,
    ))
    if paid_total != to_money(record.total_amount_paid):
        violations.append(f"total_amount_paid {record.total_amount_paid} != сумме оплаченных вхождений {paid_total}")

    if to_money(record.total_amount_paid + record.total_amount_unpaid) != to_money(
        record.total_amount_due + record.total_amount_overpaid
    ):
        violations.append("paid + unpaid != due + overpaid")

    return violations
