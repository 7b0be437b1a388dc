from audit_history.config import Settings


def test_excluded_columns_parse_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("DEFAULT_EXCLUDED_COLUMNS", "updated_at, row_version,,")

    settings = Settings()

    assert settings.default_excluded_columns == ["updated_at", "row_version"]


def test_log_level_is_normalized(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", " debug ")

    assert Settings().log_level == "DEBUG"


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.max_resolution_depth == 16
    assert settings.record_unattributed_statements is True
