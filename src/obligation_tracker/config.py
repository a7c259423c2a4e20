"""
Модуль конфигурации Obligation Tracker.

Содержит настройки:
- Основные параметры приложения (название, версия)
- Настройки базы данных (путь)
- Настройки логирования
- Параметры движка сверки (допуски сопоставления, льготный период, повторы)
- Персистентность настроек (загрузка/сохранение)
- Управление пользовательской директорией данных
"""

import os
import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

class Config:
    """
    Класс конфигурации приложения.
    Реализует паттерн Singleton для доступа к настройкам из любой части приложения.

    Все пользовательские данные (БД, логи, настройки) хранятся в директории
    ~/.obligation_tracker_data/ либо в директории из переменной окружения
    OBLIGATION_TRACKER_DATA_DIR.
    """

    _instance = None

    # Константы приложения
    APP_NAME = "Obligation Tracker"
    VERSION = "1.0.0"

    # Имя переменной окружения для переопределения директории данных
    DATA_DIR_ENV = "OBLIGATION_TRACKER_DATA_DIR"

    @classmethod
    def get_user_data_dir(cls) -> Path:
        """
        Возвращает путь к директории пользовательских данных.

        Создаёт директорию и поддиректорию logs/ для файлов логов.

        Returns:
            Path: Путь к директории данных
        """
        override = os.environ.get(cls.DATA_DIR_ENV)
        data_dir = Path(override) if override else Path.home() / ".obligation_tracker_data"

        data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Директория пользовательских данных: {data_dir}")

        logs_dir = data_dir / "logs"
        logs_dir.mkdir(exist_ok=True)
        logger.debug(f"Директория логов: {logs_dir}")

        return data_dir

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True

        # Получаем директорию пользовательских данных
        self.user_data_dir = self.get_user_data_dir()

        # Определяем пути к файлам
        self.db_path: str = str(self.user_data_dir / "tracker.db")
        self.config_file: str = str(self.user_data_dir / "config.json")
        self.log_file: str = str(self.user_data_dir / "logs" / "obligation_tracker.log")

        # Настройки логирования
        self.log_level: str = "INFO"

        self.reset_engine_defaults()

        # Загрузка настроек при инициализации
        self.load()

    def reset_engine_defaults(self) -> None:
        """
        Устанавливает параметры движка сверки в значения по умолчанию.
        """
        # Статусы
        self.grace_period_days: int = 1
        self.due_soon_days: int = 3

        # Сопоставление транзакций
        self.unpaid_match_tolerance_days: int = 14
        self.any_match_tolerance_days: int = 30
        self.extra_principal_tolerance: float = 0.10
        self.advance_payment_days: int = 7

        # Фиксация и согласованность
        self.max_commit_retries: int = 3
        self.window_cache_ttl_seconds: int = 300
        self.rounding_tolerance: float = 0.01

    def load(self) -> None:
        """
        Загружает настройки из файла конфигурации.

        Если файл не существует, используются значения по умолчанию.
        Путь к БД не загружается из конфигурации.
        """
        if not os.path.exists(self.config_file):
            logger.info(f"Файл конфигурации не найден, используются значения по умолчанию: {self.config_file}")
            return

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            # Настройки логирования
            self.log_level = data.get("log_level", "INFO")

            # Параметры движка
            self.grace_period_days = data.get("grace_period_days", 1)
            self.due_soon_days = data.get("due_soon_days", 3)
            self.unpaid_match_tolerance_days = data.get("unpaid_match_tolerance_days", 14)
            self.any_match_tolerance_days = data.get("any_match_tolerance_days", 30)
            self.extra_principal_tolerance = data.get("extra_principal_tolerance", 0.10)
            self.advance_payment_days = data.get("advance_payment_days", 7)
            self.max_commit_retries = data.get("max_commit_retries", 3)
            self.window_cache_ttl_seconds = data.get("window_cache_ttl_seconds", 300)
            self.rounding_tolerance = data.get("rounding_tolerance", 0.01)

            logger.info(f"Конфигурация загружена из {self.config_file}")

        except (OSError, ValueError) as e:
            logger.error(f"Ошибка при загрузке конфигурации: {e}")

    def save(self) -> None:
        """
        Сохраняет текущие настройки в файл конфигурации.
        """
        data = {
            "log_level": self.log_level,
            "grace_period_days": self.grace_period_days,
            "due_soon_days": self.due_soon_days,
            "unpaid_match_tolerance_days": self.unpaid_match_tolerance_days,
            "any_match_tolerance_days": self.any_match_tolerance_days,
            "extra_principal_tolerance": self.extra_principal_tolerance,
            "advance_payment_days": self.advance_payment_days,
            "max_commit_retries": self.max_commit_retries,
            "window_cache_ttl_seconds": self.window_cache_ttl_seconds,
            "rounding_tolerance": self.rounding_tolerance,
        }

        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=4, ensure_ascii=False)
            logger.info(f"Конфигурация сохранена в {self.config_file}")
        except OSError as e:
            logger.error(f"Ошибка при сохранении конфигурации: {e}")

# Глобальный экземпляр конфигурации
settings = Config()
