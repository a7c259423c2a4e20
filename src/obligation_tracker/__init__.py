"""
Obligation Tracker - движок сверки периодических обязательств.

Рассчитывает вхождения регулярных платежей и поступлений, сопоставляет
с ними фактические транзакции и поддерживает согласованными три
представления периодов: месячное, недельное и по половинам месяца.
"""

__version__ = "1.0.0"
