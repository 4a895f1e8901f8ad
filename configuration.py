# -*- codeing = utf-8 -*-
# @Create: 2023-03-29 4:14 p.m.
# @Update: 2026-10-19 10:02 a.m.
# @Author: John Zhao
"""Load and validate the WebPulse settings file."""

import configparser
import datetime as _dt
import logging
import os
import re
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

LOGGER = logging.getLogger(__name__)

CONFIG_PATH_ENV = "WEBPULSE_CONFIG"
DEFAULT_CONFIG_FILE = "config.ini"

MONITOR_SECTION = "Monitor"
MAIL_SECTION = "Mail"
REQUEST_SECTION = "Request"
LOGGING_SECTION = "Logging"

MAIL_ENV_PREFIX = "MAIL_"
MAIL_ENV_SUFFIXES = {
    "smtp_server": "SMTP_SERVER",
    "smtp_port": "SMTP_PORT",
    "username": "USERNAME",
    "password": "PASSWORD",
    "from_addr": "FROM",
    "use_starttls": "USE_STARTTLS",
    "use_ssl": "USE_SSL",
}
REQUIRED_MAIL_KEYS = (
    "smtp_server",
    "smtp_port",
    "username",
    "password",
    "from_addr",
)
OPTIONAL_MAIL_BOOL_KEYS = (
    "use_starttls",
    "use_ssl",
)
MAIL_ENV_MAP = {
    key: f"{MAIL_ENV_PREFIX}{suffix}"
    for key, suffix in MAIL_ENV_SUFFIXES.items()
}
_BOOL_TRUE_VALUES = {"1", "true", "yes", "on"}
_BOOL_FALSE_VALUES = {"0", "false", "no", "off"}

REQUEST_TIMEOUT_KEY = "timeout"
REQUEST_TIMEOUT_ENV = "REQUEST_TIMEOUT"
DEFAULT_REQUEST_TIMEOUT = 10.0

DEFAULT_CHECK_INTERVAL_MINUTES = 5
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_ALERT_COOLDOWN_HOURS = 24

SUPPORTED_URL_SCHEMES = frozenset({"http", "https"})

_LOG_HANDLER_FLAG = "_webpulse_managed"
_LOG_HANDLER_KIND = "_webpulse_kind"
_LOG_HANDLER_FILE = "file"
_LOG_HANDLER_CONSOLE = "console"
_DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DEFAULT_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
_DEFAULT_LOG_FILENAME = "webpulse.log"
_DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
_DEFAULT_LOG_BACKUP_COUNT = 5
_DEFAULT_LOG_DIRECTORY_NAME = "Log"


class ConfigurationError(ValueError):
    """Raised when the settings file is missing or invalid."""


@dataclass(frozen=True)
class MonitorSettings:
    """Targets and escalation policy."""

    urls: Tuple[str, ...]
    recipient_email: str
    check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    alert_cooldown_hours: int = DEFAULT_ALERT_COOLDOWN_HOURS
    send_test_email_on_startup: bool = False

    @property
    def check_interval(self) -> _dt.timedelta:
        return _dt.timedelta(minutes=self.check_interval_minutes)

    @property
    def alert_cooldown(self) -> _dt.timedelta:
        return _dt.timedelta(hours=self.alert_cooldown_hours)


@dataclass(frozen=True)
class MailSettings:
    """SMTP connection parameters for outgoing notifications."""

    smtp_server: str
    smtp_port: int
    username: str
    password: str
    from_addr: str
    use_starttls: bool = True
    use_ssl: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    """Represent the parsed logging configuration values."""

    level_name: str
    level: int
    file_path: Path
    max_bytes: int
    backup_count: int
    fmt: str
    datefmt: Optional[str]
    console: bool


@dataclass(frozen=True)
class Settings:
    """Immutable settings shared by the scheduler and the notifier."""

    monitor: MonitorSettings
    mail: MailSettings
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    logging: Optional[LoggingSettings] = None
    source: Optional[Path] = None


def resolve_config_path(
        explicit: Optional[Union[str, os.PathLike]] = None) -> Path:
    """Return the settings path from the argument, the environment or the default."""

    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path(DEFAULT_CONFIG_FILE)


def load_settings(path: Union[str, os.PathLike]) -> Settings:
    """Read ``path`` and build a validated ``Settings`` value.

    :raises ConfigurationError: if the file is missing or any value is invalid.
    """

    config_path = Path(path).expanduser()
    if not config_path.is_file():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}")

    parser = configparser.RawConfigParser()
    try:
        parser.read(os.fspath(config_path), encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as exc:
        raise ConfigurationError(
            f"Configuration file {config_path} could not be parsed: {exc}"
        ) from exc

    base_dir = config_path.resolve().parent
    settings = Settings(
        monitor=_load_monitor_settings(parser),
        mail=_load_mail_settings(parser, source=os.fspath(config_path)),
        request_timeout=_load_request_timeout(parser),
        logging=_load_logging_settings(parser, base_dir=base_dir),
        source=config_path.resolve(),
    )
    LOGGER.debug("config.loaded path=%s urls=%d", config_path,
                 len(settings.monitor.urls))
    return settings


def _load_monitor_settings(
        parser: configparser.RawConfigParser) -> MonitorSettings:
    if not parser.has_section(MONITOR_SECTION):
        raise ConfigurationError(
            f"Configuration is missing the [{MONITOR_SECTION}] section")

    urls = parse_url_list(parser.get(MONITOR_SECTION, "urls", fallback=""))
    if not urls:
        raise ConfigurationError("No URLs configured for monitoring")

    recipient = _require_non_empty(parser, MONITOR_SECTION, "recipient_email")

    def _int_option(name: str, default: int, minimum: int) -> int:
        raw_value = parser.get(MONITOR_SECTION, name, fallback="")
        try:
            return _parse_int_option(raw_value,
                                     default=default,
                                     minimum=minimum)
        except ValueError as exc:
            raise ConfigurationError(
                f"[{MONITOR_SECTION}].{name} is invalid: {exc}") from exc

    raw_test_mail = parser.get(MONITOR_SECTION,
                               "send_test_email_on_startup",
                               fallback="")
    try:
        send_test_email = _parse_bool_option(raw_test_mail, default=False)
    except ValueError as exc:
        raise ConfigurationError(
            f"[{MONITOR_SECTION}].send_test_email_on_startup is invalid: {exc}"
        ) from exc

    return MonitorSettings(
        urls=urls,
        recipient_email=recipient,
        check_interval_minutes=_int_option("check_interval_minutes",
                                           DEFAULT_CHECK_INTERVAL_MINUTES, 1),
        failure_threshold=_int_option("failure_threshold",
                                      DEFAULT_FAILURE_THRESHOLD, 1),
        alert_cooldown_hours=_int_option("alert_cooldown_hours",
                                         DEFAULT_ALERT_COOLDOWN_HOURS, 0),
        send_test_email_on_startup=send_test_email,
    )


def parse_url_list(raw_value: Optional[str]) -> Tuple[str, ...]:
    """Split a whitespace separated URL list, dropping duplicates.

    :raises ConfigurationError: if an entry is not an absolute http(s) URL.
    """

    text = str(raw_value).strip() if raw_value is not None else ""
    if not text:
        return ()

    urls = []
    for candidate in text.split():
        _check_placeholder(candidate, key="urls", source=MONITOR_SECTION)
        parts = urlsplit(candidate)
        if parts.scheme.lower() not in SUPPORTED_URL_SCHEMES or not parts.netloc:
            raise ConfigurationError(
                f"Unsupported monitor URL (expected http or https): {candidate}"
            )
        urls.append(candidate)
    return tuple(dict.fromkeys(urls))


def _require_non_empty(parser: configparser.RawConfigParser, section: str,
                       option: str) -> str:
    value = parser.get(section, option, fallback="")
    stripped = str(value).strip() if value is not None else ""
    if not stripped:
        raise ConfigurationError(f"{section}.{option} must not be empty")
    _check_placeholder(stripped, key=option, source=section)
    return stripped


def _check_placeholder(value: Any, *, key: str, source: str) -> None:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("<") and stripped.endswith(">"):
            raise ConfigurationError(
                f"{source} contains placeholder field {key}={value!r}; provide real settings"
            )


def _load_mail_settings(parser: configparser.RawConfigParser, *,
                        source: str) -> MailSettings:
    values: Dict[str, Any] = {}
    if parser.has_section(MAIL_SECTION):
        for key in MAIL_ENV_MAP:
            raw_value = parser.get(MAIL_SECTION, key, fallback=None)
            if raw_value is not None and raw_value.strip():
                values[key] = raw_value.strip()

    env_overrides = _load_mail_env_overrides()
    if env_overrides:
        values.update(env_overrides)
        source = f"{source} (with environment overrides)"

    if not values:
        raise ConfigurationError("Mail configuration is missing")

    return _normalise_mail_values(values, source=source)


def _load_mail_env_overrides() -> Dict[str, str]:
    values: Dict[str, str] = {}
    for key, env_name in MAIL_ENV_MAP.items():
        value = os.environ.get(env_name)
        if value:
            values[key] = value
    return values


def _coerce_mail_bool(value: Any, *, key: str, source: str) -> bool:
    if isinstance(value, bool):
        return value
    try:
        return _parse_bool_option(value, default=False)
    except ValueError as exc:
        raise ConfigurationError(
            f"{key} from {source} is not a valid boolean: {value!r}") from exc


def _normalise_mail_values(values: Mapping[str, Any], *,
                           source: str) -> MailSettings:
    missing_keys = [key for key in REQUIRED_MAIL_KEYS if not values.get(key)]
    if missing_keys:
        raise ConfigurationError(
            "{} is missing the following mail fields: {}".format(
                source, ", ".join(missing_keys)))

    for key in MAIL_ENV_MAP:
        _check_placeholder(values.get(key), key=key, source=source)

    try:
        smtp_port = int(str(values["smtp_port"]).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"smtp_port from {source} must be an integer") from exc
    if not 0 < smtp_port < 65536:
        raise ConfigurationError(
            f"smtp_port from {source} is out of range: {smtp_port}")

    use_starttls = _coerce_mail_bool(values.get("use_starttls", True),
                                     key="use_starttls",
                                     source=source)
    use_ssl = _coerce_mail_bool(values.get("use_ssl", False),
                                key="use_ssl",
                                source=source)
    if use_starttls and use_ssl:
        raise ConfigurationError(
            f"use_starttls and use_ssl from {source} cannot both be enabled")

    return MailSettings(
        smtp_server=str(values["smtp_server"]),
        smtp_port=smtp_port,
        username=str(values["username"]),
        password=str(values["password"]),
        from_addr=str(values["from_addr"]),
        use_starttls=use_starttls,
        use_ssl=use_ssl,
    )


def _load_request_timeout(parser: configparser.RawConfigParser) -> float:
    """Return the request timeout, preferring the environment over the file."""

    env_timeout = os.environ.get(REQUEST_TIMEOUT_ENV)
    if env_timeout:
        try:
            timeout_value = float(env_timeout)
            if timeout_value <= 0:
                raise ValueError
            return timeout_value
        except ValueError as exc:
            raise ConfigurationError(
                f"Environment variable {REQUEST_TIMEOUT_ENV} must be a positive number."
            ) from exc

    if not parser.has_option(REQUEST_SECTION, REQUEST_TIMEOUT_KEY):
        return DEFAULT_REQUEST_TIMEOUT

    raw_value = parser.get(REQUEST_SECTION, REQUEST_TIMEOUT_KEY).strip()
    if not raw_value:
        return DEFAULT_REQUEST_TIMEOUT
    try:
        timeout_value = float(raw_value)
    except ValueError as exc:
        raise ConfigurationError(
            f"[{REQUEST_SECTION}].{REQUEST_TIMEOUT_KEY} must be a number: {raw_value!r}"
        ) from exc
    if timeout_value <= 0:
        raise ConfigurationError(
            f"[{REQUEST_SECTION}].{REQUEST_TIMEOUT_KEY} must be positive")
    return timeout_value


def _normalise_directory(
    path_value: Union[str, os.PathLike, Path],
    *,
    base_dir: Optional[Path] = None,
) -> Path:
    """Normalize a path to an absolute form relative to ``base_dir``."""

    if path_value is None:
        raise ValueError("Missing directory path value")

    path = Path(path_value).expanduser()
    if path.is_absolute():
        return path.resolve()
    if base_dir is not None:
        return (Path(base_dir).expanduser().resolve() / path).resolve()
    return path.resolve()


def _parse_log_level(value: object,
                     *,
                     default: str = "INFO") -> Tuple[str, int]:
    text = str(value).strip() if value is not None else ""
    if not text:
        text = default
    normalised = text.upper()
    aliases = {
        "WARN": "WARNING",
        "FATAL": "CRITICAL",
        "TRACE": "NOTSET",
    }
    mapped = aliases.get(normalised, normalised)
    level_value = getattr(logging, mapped, None)
    if isinstance(level_value, int):
        return mapped, level_value
    try:
        numeric_level = int(text)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Unable to parse log level: {value!r}") from exc
    if numeric_level < 0:
        raise ValueError(
            f"Log level must be a non-negative integer: {numeric_level}")
    level_name = logging.getLevelName(numeric_level)
    if not isinstance(level_name, str):
        level_name = str(numeric_level)
    return level_name.upper(), numeric_level


_SIZE_UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
}


def _parse_size_value(value: object,
                      *,
                      default: int = _DEFAULT_LOG_MAX_BYTES) -> int:
    text = str(value).strip() if value is not None else ""
    if not text:
        return max(int(default), 0)
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([kmg]?b)?\s*",
                         text,
                         flags=re.IGNORECASE)
    if not match:
        raise ValueError(f"Unable to parse log size: {value!r}")
    number = float(match.group(1))
    unit = match.group(2) or "B"
    return max(int(number * _SIZE_UNITS[unit.upper()]), 0)


def _parse_bool_option(value: object, *, default: bool = True) -> bool:
    if value is None:
        return default
    text = str(value).strip().lower()
    if not text:
        return default
    if text in _BOOL_TRUE_VALUES:
        return True
    if text in _BOOL_FALSE_VALUES:
        return False
    raise ValueError(f"Unable to parse boolean value: {value!r}")


def _parse_int_option(
    value: object,
    *,
    default: int,
    minimum: Optional[int] = None,
) -> int:
    text = str(value).strip() if value is not None else ""
    if not text:
        result = int(default)
    else:
        try:
            result = int(text)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Unable to parse integer value: {value!r}") from exc
    if minimum is not None and result < minimum:
        raise ValueError(
            f"Value {result} is smaller than the minimum {minimum}")
    return result


def _load_logging_settings(parser: configparser.RawConfigParser, *,
                           base_dir: Path) -> LoggingSettings:
    has_section = parser.has_section(LOGGING_SECTION)

    def _option(name: str, fallback: str = "") -> str:
        if not has_section:
            return fallback
        return parser.get(LOGGING_SECTION, name, fallback=fallback)

    raw_level = _option("log_level", "INFO")
    try:
        level_name, level_value = _parse_log_level(raw_level, default="INFO")
    except ValueError as exc:
        raise ConfigurationError(
            f"[Logging].log_level is invalid: {raw_level!r}") from exc

    raw_max_size = _option("log_max_size", "")
    try:
        max_bytes = _parse_size_value(raw_max_size,
                                      default=_DEFAULT_LOG_MAX_BYTES)
    except ValueError as exc:
        raise ConfigurationError(
            f"[Logging].log_max_size is invalid: {raw_max_size!r}") from exc

    raw_backup_count = _option("log_backup_count",
                               str(_DEFAULT_LOG_BACKUP_COUNT))
    try:
        backup_count = _parse_int_option(
            raw_backup_count,
            default=_DEFAULT_LOG_BACKUP_COUNT,
            minimum=0,
        )
    except ValueError as exc:
        raise ConfigurationError(
            f"[Logging].log_backup_count is invalid: {raw_backup_count!r}"
        ) from exc

    raw_console = _option("log_console", "true")
    try:
        console_enabled = _parse_bool_option(raw_console, default=True)
    except ValueError as exc:
        raise ConfigurationError(
            f"[Logging].log_console is invalid: {raw_console!r}") from exc

    log_format = _option("log_format",
                         _DEFAULT_LOG_FORMAT).strip() or _DEFAULT_LOG_FORMAT
    log_datefmt = _option("log_datefmt",
                          _DEFAULT_LOG_DATEFMT).strip() or _DEFAULT_LOG_DATEFMT

    raw_directory = _option("log_directory", "").strip()
    directory_path = _normalise_directory(raw_directory
                                          or _DEFAULT_LOG_DIRECTORY_NAME,
                                          base_dir=base_dir)

    raw_filename = _option(
        "log_filename", _DEFAULT_LOG_FILENAME).strip() or _DEFAULT_LOG_FILENAME
    file_path = Path(raw_filename)
    if file_path.is_absolute():
        file_path = file_path.resolve()
    else:
        file_path = (directory_path / file_path).resolve()

    return LoggingSettings(
        level_name=level_name,
        level=level_value,
        file_path=file_path,
        max_bytes=max_bytes,
        backup_count=backup_count,
        fmt=log_format,
        datefmt=log_datefmt,
        console=console_enabled,
    )


def _close_handler(handler: logging.Handler) -> None:
    try:
        handler.close()
    except Exception:  # pragma: no cover - best effort cleanup
        pass


def configure_logging(settings: LoggingSettings) -> LoggingSettings:
    """Initialise logging handlers based on the configuration.

    Handlers installed by an earlier call are removed first, so calling this
    again swaps the configuration instead of stacking handlers.

    :param settings: Parsed ``[Logging]`` values.
    :return: The applied ``LoggingSettings``.
    """

    settings.file_path.parent.mkdir(parents=True, exist_ok=True)
    reset_logging_configuration()

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.level)
    formatter = logging.Formatter(settings.fmt, settings.datefmt or None)

    file_handler = RotatingFileHandler(
        os.fspath(settings.file_path),
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    _install_handler(root_logger, file_handler, _LOG_HANDLER_FILE, settings.level,
                     formatter)

    if settings.console:
        _install_handler(root_logger, logging.StreamHandler(),
                         _LOG_HANDLER_CONSOLE, settings.level, formatter)

    return settings


def _install_handler(root_logger: logging.Logger, handler: logging.Handler,
                     kind: str, level: int,
                     formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    setattr(handler, _LOG_HANDLER_FLAG, True)
    setattr(handler, _LOG_HANDLER_KIND, kind)
    root_logger.addHandler(handler)


def reset_logging_configuration() -> None:
    """Remove handlers previously added by ``configure_logging``."""

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _LOG_HANDLER_FLAG, False):
            root_logger.removeHandler(handler)
            _close_handler(handler)


def writeconfig(config_path: Union[str, os.PathLike]) -> Path:
    """Write a sample settings file with placeholder values.

    :raises FileExistsError: if ``config_path`` already exists.
    """

    path = Path(config_path).expanduser()
    if path.exists():
        raise FileExistsError(f"Configuration file already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)

    info = configparser.RawConfigParser()

    info.add_section(MONITOR_SECTION)
    info.set(MONITOR_SECTION, "urls", "\n<URL>")
    info.set(MONITOR_SECTION, "recipient_email", "<RECIPIENT_EMAIL>")
    info.set(MONITOR_SECTION, "check_interval_minutes",
             str(DEFAULT_CHECK_INTERVAL_MINUTES))
    info.set(MONITOR_SECTION, "failure_threshold",
             str(DEFAULT_FAILURE_THRESHOLD))
    info.set(MONITOR_SECTION, "alert_cooldown_hours",
             str(DEFAULT_ALERT_COOLDOWN_HOURS))
    info.set(MONITOR_SECTION, "send_test_email_on_startup", "false")

    mail_placeholders = {
        "smtp_server": "<SMTP_SERVER>",
        "smtp_port": "<SMTP_PORT>",
        "username": "<USERNAME>",
        "password": "<PASSWORD>",
        "from_addr": "<FROM_ADDRESS>",
        "use_starttls": "true",
        "use_ssl": "false",
    }
    info.add_section(MAIL_SECTION)
    for option, value in mail_placeholders.items():
        info.set(MAIL_SECTION, option, value)

    info.add_section(REQUEST_SECTION)
    info.set(REQUEST_SECTION, REQUEST_TIMEOUT_KEY,
             str(DEFAULT_REQUEST_TIMEOUT))

    info.add_section(LOGGING_SECTION)
    info.set(LOGGING_SECTION, "log_level", "info")
    info.set(LOGGING_SECTION, "log_directory", _DEFAULT_LOG_DIRECTORY_NAME)
    info.set(LOGGING_SECTION, "log_filename", _DEFAULT_LOG_FILENAME)
    info.set(LOGGING_SECTION, "log_max_size", "10MB")
    info.set(LOGGING_SECTION, "log_backup_count",
             str(_DEFAULT_LOG_BACKUP_COUNT))
    info.set(LOGGING_SECTION, "log_format", _DEFAULT_LOG_FORMAT)
    info.set(LOGGING_SECTION, "log_datefmt", _DEFAULT_LOG_DATEFMT)
    info.set(LOGGING_SECTION, "log_console", "true")

    with path.open("w", encoding="utf-8") as config_file:
        info.write(config_file)

    return path
