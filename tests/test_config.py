"""
Tests for layered configuration: flag > environment > file > default.
"""

import pytest

from wallix_bastion_exporter.config import ExporterConfig, load_config
from wallix_bastion_exporter.errors import ConfigError


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        'scrape-uri: https://file.example/api\n'
        'wallix-username: file-user\n'
        'wallix_password: file-pass\n'
        'timeout: 30\n'
        'skip-verify: true\n'
    )
    return str(path)


def test_defaults_with_credentials_from_flags(tmp_path):
    config = load_config(
        ['-c', str(tmp_path / 'missing.yaml'), '-u', 'flag-user', '-p', 'flag-pass'], environ={}
    )

    assert config.wallix_username == 'flag-user'
    assert config.wallix_password == 'flag-pass'
    assert config.listen_address == ':9191'
    assert config.telemetry_path == '/metrics'
    assert config.scrape_uri == 'https://127.0.0.1/api'
    assert config.skip_verify is False
    assert config.timeout == 10
    assert config.sessions_closed_minutes == 5
    assert config.log_level == 'INFO'


def test_file_values(config_file):
    config = load_config(['-c', config_file], environ={})

    assert config.scrape_uri == 'https://file.example/api'
    assert config.wallix_username == 'file-user'
    assert config.wallix_password == 'file-pass'
    assert config.timeout == 30
    assert config.skip_verify is True


def test_environment_overrides_file(config_file):
    environ = {'WALLIX_USERNAME': 'env-user', 'TIMEOUT': '20', 'SKIP_VERIFY': 'false'}
    config = load_config(['-c', config_file], environ=environ)

    assert config.wallix_username == 'env-user'
    assert config.wallix_password == 'file-pass'
    assert config.timeout == 20
    assert config.skip_verify is False


def test_flag_overrides_environment(config_file):
    environ = {'WALLIX_USERNAME': 'env-user', 'TIMEOUT': '20'}
    config = load_config(['-c', config_file, '-u', 'flag-user', '-t', '3', '-s'], environ=environ)

    assert config.wallix_username == 'flag-user'
    assert config.timeout == 3
    assert config.skip_verify is True


@pytest.mark.parametrize('argv', [
    ['-u', 'user'],
    ['-p', 'pass'],
    ['-u', '', '-p', 'pass'],
])
def test_mandatory_credentials(tmp_path, argv):
    with pytest.raises(ConfigError):
        load_config(['-c', str(tmp_path / 'missing.yaml')] + argv, environ={})


def test_invalid_yaml(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('wallix-username: [unclosed\n')

    with pytest.raises(ConfigError):
        load_config(['-c', str(path)], environ={})


def test_invalid_integer(tmp_path):
    with pytest.raises(ConfigError):
        load_config(['-c', str(tmp_path / 'missing.yaml'), '-u', 'u', '-p', 'p'],
                    environ={'TIMEOUT': 'soon'})


def test_listen_host_port():
    assert ExporterConfig('u', 'p').listen_host_port() == ('', 9191)
    assert ExporterConfig('u', 'p', listen_address='0.0.0.0:8080').listen_host_port() == ('0.0.0.0', 8080)
    assert ExporterConfig('u', 'p', listen_address='[::]:9191').listen_host_port() == ('::', 9191)
    with pytest.raises(ConfigError):
        ExporterConfig('u', 'p', listen_address='localhost:http').listen_host_port()


def test_password_hidden_from_repr():
    assert 'secret' not in repr(ExporterConfig('user', 'secret'))


def test_username_with_colon(tmp_path):
    with pytest.raises(ConfigError):
        load_config(['-c', str(tmp_path / 'missing.yaml'), '-u', 'dom:admin', '-p', 'p'], environ={})
