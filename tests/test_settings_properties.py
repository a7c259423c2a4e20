"""
Property-based тесты для конфигурации и настроек.
Проверяют корректность сохранения и загрузки параметров движка сверки.
"""

import os
import tempfile
import json
from hypothesis import given, strategies as st
from obligation_tracker.config import Config

# Получаем экземпляр конфигурации (Singleton)
config = Config()


def test_config_singleton():
    """Проверка того, что Config является Singleton."""
    c1 = Config()
    c2 = Config()
    assert c1 is c2


def test_engine_defaults():
    """Значения параметров движка по умолчанию."""
    config.reset_engine_defaults()

    assert config.grace_period_days == 1
    assert config.due_soon_days == 3
    assert config.unpaid_match_tolerance_days == 14
    assert config.any_match_tolerance_days == 30
    assert config.extra_principal_tolerance == 0.10
    assert config.advance_payment_days == 7
    assert config.max_commit_retries == 3
    assert config.window_cache_ttl_seconds == 300
    assert config.rounding_tolerance == 0.01


@given(
    grace=st.integers(min_value=0, max_value=10),
    due_soon=st.integers(min_value=0, max_value=14),
    unpaid_tolerance=st.integers(min_value=1, max_value=30),
    retries=st.integers(min_value=0, max_value=10),
    log_level=st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR"])
)
def test_settings_persistence(grace, due_soon, unpaid_tolerance, retries, log_level):
    """
    Property 1: Персистентность параметров движка.

    Примечание: db_path фиксирован в директории данных и не сохраняется
    в конфигурации.
    """
    # Создаем временный файл для конфига
    with tempfile.NamedTemporaryFile(mode='w+', delete=False) as tmp:
        tmp_path = tmp.name

    original_config_file = config.config_file
    config.config_file = tmp_path

    try:
        # 1. Устанавливаем значения
        config.grace_period_days = grace
        config.due_soon_days = due_soon
        config.unpaid_match_tolerance_days = unpaid_tolerance
        config.max_commit_retries = retries
        config.log_level = log_level

        # 2. Сохраняем
        config.save()

        # 3. Сбрасываем значения в памяти
        config.reset_engine_defaults()
        config.log_level = "INFO"

        # 4. Загружаем обратно
        config.load()

        # 5. Проверяем
        assert config.grace_period_days == grace
        assert config.due_soon_days == due_soon
        assert config.unpaid_match_tolerance_days == unpaid_tolerance
        assert config.max_commit_retries == retries
        assert config.log_level == log_level

        # 6. Проверяем JSON
        with open(tmp_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
            assert data['grace_period_days'] == grace
            # db_path не должен быть в конфигурации
            assert 'db_path' not in data

    finally:
        # Восстанавливаем путь и удаляем временный файл
        config.config_file = original_config_file
        config.reset_engine_defaults()
        config.log_level = "INFO"
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def test_missing_keys_use_defaults(tmp_path):
    """Отсутствующие в файле параметры получают значения по умолчанию."""
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"due_soon_days": 5}), encoding="utf-8")

    original_config_file = config.config_file
    config.config_file = str(config_path)
    try:
        config.grace_period_days = 9
        config.load()

        assert config.due_soon_days == 5
        assert config.grace_period_days == 1
    finally:
        config.config_file = original_config_file


def test_corrupted_config_is_ignored(tmp_path):
    """Повреждённый файл конфигурации не прерывает работу."""
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json", encoding="utf-8")

    original_config_file = config.config_file
    config.config_file = str(config_path)
    try:
        config.max_commit_retries = 7
        config.load()

        assert config.max_commit_retries == 7
    finally:
        config.config_file = original_config_file


def test_data_dir_from_environment():
    """Директория данных берётся из переменной окружения и содержит logs/."""
    data_dir = Config.get_user_data_dir()

    assert str(data_dir) == os.environ[Config.DATA_DIR_ENV]
    assert (data_dir / "logs").is_dir()
