import configparser
import dataclasses
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import configuration  # noqa: E402  pylint: disable=wrong-import-position

VALID_CONFIG = """
[Monitor]
urls =
    https://example.com
    https://example.org/health
recipient_email = ops@example.com
check_interval_minutes = 10
failure_threshold = 3
alert_cooldown_hours = 12

[Mail]
smtp_server = smtp.test.local
smtp_port = 587
username = notifier@test.local
password = secret
from_addr = WebPulse <notifier@test.local>
use_starttls = true
use_ssl = false

[Request]
timeout = 4.5
"""

MINIMAL_CONFIG = """
[Monitor]
urls = https://example.com
recipient_email = ops@example.com

[Mail]
smtp_server = smtp.test.local
smtp_port = 465
username = notifier@test.local
password = secret
from_addr = notifier@test.local
use_starttls = false
use_ssl = true
"""


@pytest.fixture(autouse=True)
def _clear_environment(monkeypatch):
    for env_name in configuration.MAIL_ENV_MAP.values():
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.delenv(configuration.REQUEST_TIMEOUT_ENV, raising=False)
    monkeypatch.delenv(configuration.CONFIG_PATH_ENV, raising=False)


def _write_config(base_dir: Path, content: str) -> Path:
    config_path = base_dir / "config.ini"
    config_path.write_text(content.strip() + "\n", encoding="utf-8")
    return config_path


def test_load_settings_reads_all_sections(tmp_path):
    settings = configuration.load_settings(_write_config(tmp_path, VALID_CONFIG))

    monitor = settings.monitor
    assert monitor.urls == ("https://example.com", "https://example.org/health")
    assert monitor.recipient_email == "ops@example.com"
    assert monitor.check_interval_minutes == 10
    assert monitor.failure_threshold == 3
    assert monitor.alert_cooldown_hours == 12
    assert monitor.send_test_email_on_startup is False
    assert monitor.check_interval.total_seconds() == 600
    assert monitor.alert_cooldown.total_seconds() == 12 * 3600

    mail = settings.mail
    assert mail.smtp_server == "smtp.test.local"
    assert mail.smtp_port == 587
    assert mail.from_addr == "WebPulse <notifier@test.local>"
    assert mail.use_starttls is True
    assert mail.use_ssl is False

    assert settings.request_timeout == 4.5
    assert settings.source == (tmp_path / "config.ini").resolve()


def test_load_settings_applies_defaults(tmp_path):
    settings = configuration.load_settings(_write_config(tmp_path, MINIMAL_CONFIG))

    assert settings.monitor.check_interval_minutes == 5
    assert settings.monitor.failure_threshold == 5
    assert settings.monitor.alert_cooldown_hours == 24
    assert settings.request_timeout == configuration.DEFAULT_REQUEST_TIMEOUT
    assert settings.mail.use_ssl is True

    logging_settings = settings.logging
    assert logging_settings.level == logging.INFO
    assert logging_settings.file_path == (tmp_path / "Log" / "webpulse.log").resolve()
    assert logging_settings.max_bytes == 10 * 1024 * 1024
    assert logging_settings.backup_count == 5
    assert logging_settings.console is True


def test_load_settings_collapses_duplicate_urls(tmp_path):
    content = MINIMAL_CONFIG.replace(
        "urls = https://example.com",
        "urls = https://example.com https://example.net\n    https://example.com",
    )
    settings = configuration.load_settings(_write_config(tmp_path, content))

    assert settings.monitor.urls == ("https://example.com", "https://example.net")


def test_parse_url_list_keeps_commas_inside_urls():
    urls = configuration.parse_url_list(
        "https://example.com/api/status?ids=1,2\n"
        "https://example.org/a,b https://example.net")

    assert urls == (
        "https://example.com/api/status?ids=1,2",
        "https://example.org/a,b",
        "https://example.net",
    )


def test_load_settings_missing_file(tmp_path):
    with pytest.raises(configuration.ConfigurationError, match="not found"):
        configuration.load_settings(tmp_path / "missing.ini")


@pytest.mark.parametrize(
    "old, new, message",
    [
        ("urls = https://example.com", "urls =", "No URLs"),
        ("urls = https://example.com", "urls = ftp://example.com", "Unsupported monitor URL"),
        ("recipient_email = ops@example.com", "recipient_email =", "recipient_email"),
        ("[Monitor]", "[Monitor]\nfailure_threshold = 0", "failure_threshold"),
        ("[Monitor]", "[Monitor]\ncheck_interval_minutes = abc", "check_interval_minutes"),
        ("[Monitor]", "[Monitor]\nalert_cooldown_hours = -1", "alert_cooldown_hours"),
        ("smtp_port = 465", "smtp_port = port", "smtp_port"),
        ("use_starttls = false", "use_starttls = true", "cannot both be enabled"),
        ("password = secret", "password = <PASSWORD>", "placeholder"),
        ("username = notifier@test.local", "username =", "username"),
    ],
)
def test_load_settings_rejects_invalid_values(tmp_path, old, new, message):
    content = MINIMAL_CONFIG.replace(old, new)
    config_path = _write_config(tmp_path, content)

    with pytest.raises(configuration.ConfigurationError, match=message):
        configuration.load_settings(config_path)


def test_load_settings_requires_sections(tmp_path):
    config_path = _write_config(tmp_path, "[Mail]\nsmtp_server = smtp.test.local\n")
    with pytest.raises(configuration.ConfigurationError, match=r"\[Monitor\]"):
        configuration.load_settings(config_path)

    config_path = _write_config(
        tmp_path, "[Monitor]\nurls = https://example.com\nrecipient_email = a@b.c\n")
    with pytest.raises(configuration.ConfigurationError, match="Mail configuration is missing"):
        configuration.load_settings(config_path)


def test_configuration_error_is_value_error():
    assert issubclass(configuration.ConfigurationError, ValueError)


def test_mail_environment_overrides_file_values(tmp_path, monkeypatch):
    monkeypatch.setenv("MAIL_SMTP_SERVER", "smtp.override.local")
    monkeypatch.setenv("MAIL_PASSWORD", "from-env")

    settings = configuration.load_settings(_write_config(tmp_path, VALID_CONFIG))

    assert settings.mail.smtp_server == "smtp.override.local"
    assert settings.mail.password == "from-env"
    assert settings.mail.username == "notifier@test.local"


def test_request_timeout_environment_override(tmp_path, monkeypatch):
    config_path = _write_config(tmp_path, VALID_CONFIG)

    monkeypatch.setenv(configuration.REQUEST_TIMEOUT_ENV, "2.5")
    assert configuration.load_settings(config_path).request_timeout == 2.5

    monkeypatch.setenv(configuration.REQUEST_TIMEOUT_ENV, "-1")
    with pytest.raises(configuration.ConfigurationError, match=configuration.REQUEST_TIMEOUT_ENV):
        configuration.load_settings(config_path)


def test_request_timeout_must_be_positive(tmp_path):
    config_path = _write_config(tmp_path, VALID_CONFIG.replace("timeout = 4.5", "timeout = 0"))

    with pytest.raises(configuration.ConfigurationError, match="must be positive"):
        configuration.load_settings(config_path)


def test_resolve_config_path_priority(tmp_path, monkeypatch):
    assert configuration.resolve_config_path() == Path("config.ini")

    monkeypatch.setenv(configuration.CONFIG_PATH_ENV, str(tmp_path / "env.ini"))
    assert configuration.resolve_config_path() == tmp_path / "env.ini"
    assert configuration.resolve_config_path(tmp_path / "cli.ini") == tmp_path / "cli.ini"


def test_writeconfig_uses_placeholder_values(tmp_path):
    config_path = configuration.writeconfig(tmp_path / "conf" / "config.ini")

    parser = configparser.RawConfigParser()
    parser.read(config_path, encoding="utf-8")

    assert parser.get("Monitor", "urls").strip() == "<URL>"
    assert parser.getint("Monitor", "failure_threshold") == configuration.DEFAULT_FAILURE_THRESHOLD
    assert parser.getfloat(configuration.REQUEST_SECTION,
                           configuration.REQUEST_TIMEOUT_KEY) == configuration.DEFAULT_REQUEST_TIMEOUT

    mail_values = dict(parser.items(configuration.MAIL_SECTION))
    assert mail_values["smtp_server"] == "<SMTP_SERVER>"
    assert mail_values["password"] == "<PASSWORD>"
    assert "@" not in "".join(mail_values.values())

    with pytest.raises(configuration.ConfigurationError, match="placeholder"):
        configuration.load_settings(config_path)


def test_writeconfig_refuses_to_overwrite(tmp_path):
    config_path = _write_config(tmp_path, VALID_CONFIG)

    with pytest.raises(FileExistsError):
        configuration.writeconfig(config_path)
    assert "smtp.test.local" in config_path.read_text(encoding="utf-8")


def test_configure_logging_installs_handlers(tmp_path):
    content = VALID_CONFIG + """
[Logging]
log_level = DEBUG
log_filename = custom.log
log_max_size = 1MB
log_backup_count = 2
log_console = false
log_format = %(levelname)s::%(message)s
log_datefmt = %H:%M:%S
"""
    settings = configuration.load_settings(_write_config(tmp_path, content)).logging

    configuration.reset_logging_configuration()
    applied = configuration.configure_logging(settings)
    try:
        assert applied.level == logging.DEBUG
        assert applied.console is False
        assert applied.file_path == (tmp_path / "Log" / "custom.log").resolve()
        assert applied.max_bytes == 1 * 1024 * 1024
        assert applied.backup_count == 2

        root_logger = logging.getLogger()
        file_handlers = [
            handler for handler in root_logger.handlers
            if isinstance(handler, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        handler = file_handlers[0]
        assert handler.baseFilename == str(applied.file_path)
        assert handler.maxBytes == applied.max_bytes
        assert handler.backupCount == applied.backup_count
        assert handler.formatter._fmt == applied.fmt  # type: ignore[attr-defined]
        assert handler.formatter.datefmt == applied.datefmt  # type: ignore[attr-defined]

        configuration.configure_logging(settings)
        file_handlers = [
            handler for handler in root_logger.handlers
            if isinstance(handler, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
    finally:
        configuration.reset_logging_configuration()


def _managed_handlers():
    return [
        handler for handler in logging.getLogger().handlers
        if getattr(handler, configuration._LOG_HANDLER_FLAG, False)
    ]


def test_configure_logging_twice_replaces_handlers(tmp_path):
    content = VALID_CONFIG + "\n[Logging]\nlog_console = true\n"
    settings = configuration.load_settings(_write_config(tmp_path, content)).logging

    configuration.reset_logging_configuration()
    try:
        configuration.configure_logging(settings)
        first_handlers = _managed_handlers()
        configuration.configure_logging(settings)
        handlers = _managed_handlers()

        file_handlers = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        console_handlers = [
            h for h in handlers if not isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert len(console_handlers) == 1
        assert isinstance(console_handlers[0], logging.StreamHandler)
        assert not set(first_handlers) & set(handlers)

        quiet = dataclasses.replace(settings, console=False)
        configuration.configure_logging(quiet)
        handlers = _managed_handlers()
        assert len(handlers) == 1
        assert isinstance(handlers[0], RotatingFileHandler)
    finally:
        configuration.reset_logging_configuration()


@pytest.mark.parametrize(
    "option, value",
    [
        ("log_level", "LOUD"),
        ("log_max_size", "ten megabytes"),
        ("log_backup_count", "-3"),
        ("log_console", "maybe"),
    ],
)
def test_invalid_logging_options_are_rejected(tmp_path, option, value):
    content = VALID_CONFIG + f"\n[Logging]\n{option} = {value}\n"

    with pytest.raises(configuration.ConfigurationError, match=option):
        configuration.load_settings(_write_config(tmp_path, content))
