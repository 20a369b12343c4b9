from types import SimpleNamespace

from todo_scheduler import config


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv('TODO_PORT', '8080')
    monkeypatch.setenv('TODO_DBFILE', 'other.db')
    monkeypatch.setenv('TODO_PASSWORD', 'from-env')
    monkeypatch.setenv('TASKS_LIMIT', 'many')
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    monkeypatch.delenv('DATABASE_URL', raising=False)
    s = config.load_settings(overrides={})
    assert s.port == 8080
    assert s.database_url == 'sqlite+aiosqlite:///other.db'
    assert s.password == 'from-env'
    # unparsable numbers fall back to the default
    assert s.tasks_limit == 50
    assert s.log_level == 'DEBUG'
    assert s.secret_key


def test_local_config_overrides_environment(monkeypatch):
    monkeypatch.setenv('TODO_PASSWORD', 'from-env')
    monkeypatch.setenv('TASKS_LIMIT', '20')
    local = SimpleNamespace(TODO_PASSWORD='from-local', TASKS_LIMIT=5, helper_name='ignored')
    monkeypatch.setattr(config, 'local_config', local)
    s = config.load_settings()
    assert s.password == 'from-local'
    assert s.tasks_limit == 5
    assert s.auth_enabled


def test_without_local_config_environment_wins(monkeypatch):
    monkeypatch.setenv('TODO_PASSWORD', 'from-env')
    monkeypatch.setattr(config, 'local_config', None)
    assert config.load_settings().password == 'from-env'
