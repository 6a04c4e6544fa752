import configparser
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RepositoryConfig:
    path: str
    password: str
    binary: str = "restic"


@dataclass
class CacheConfig:
    enabled: bool = True
    snapshots_ttl_seconds: int = 10  # snapshot set can grow between calls
    listing_ttl_seconds: int = 0  # 0 = never expires, snapshots are immutable
    max_entries: int = 4096


@dataclass
class StorageConfig:
    temp_dir: str | None = None  # None = system temp directory


@dataclass
class LogConfig:
    level: str = "INFO"
    file: str = "restic-browser.log"
    console: bool = True


@dataclass
class AppConfig:
    repository: RepositoryConfig
    cache: CacheConfig
    storage: StorageConfig
    logging: LogConfig


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _parse_int(section: configparser.SectionProxy, key: str, target: dict) -> None:
    raw = section.get(key)
    if not raw:
        return
    try:
        target[key] = int(raw)
    except ValueError:
        raise ValueError(f"Invalid {key} value in config: '{raw}' - must be an integer")


def read_password_file(password_file: str) -> str:
    """
    Read a repository password from a file.

    Only the first line is used, like restic's own --password-file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(password_file).expanduser()
    if not file_path.exists():
        raise FileNotFoundError(f"Password file not found: {password_file}")
    content = file_path.read_text(encoding="utf-8")
    lines = content.splitlines()
    return lines[0] if lines else ""


def load_config(config_path: str | None = None, **cli_args) -> AppConfig:
    """
    Load configuration from an INI file and/or CLI arguments.
    CLI arguments take precedence over config file.

    Args:
        config_path: Path to the INI configuration file.
        **cli_args: Key-value pairs from command line arguments.

    Returns:
        AppConfig: The populated configuration object.

    Raises:
        FileNotFoundError: If config_path or a password file does not exist.
        ValueError: If the repository path or password is missing, or a
            numeric field is not an integer.
    """
    # Initialize with defaults
    repo_config = {
        "path": None,
        "password": None,
        "password_file": None,
        "binary": "restic",
    }
    cache_config = {
        "enabled": True,
        "snapshots_ttl_seconds": 10,
        "listing_ttl_seconds": 0,
        "max_entries": 4096,
    }
    storage_config = {
        "temp_dir": None,
    }
    log_config = {
        "level": "INFO",
        "file": "restic-browser.log",
        "console": True,
    }

    # Parse INI file if provided
    if config_path is not None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        parser = configparser.ConfigParser()
        parser.read(config_file, encoding="utf-8")

        # Load [repository] section
        if parser.has_section("repository"):
            repo_section = parser["repository"]
            for key in ("path", "password", "password_file", "binary"):
                if repo_section.get(key):
                    repo_config[key] = repo_section.get(key)

        # Load [cache] section
        if parser.has_section("cache"):
            cache_section = parser["cache"]
            if cache_section.get("enabled"):
                cache_config["enabled"] = _parse_bool(cache_section.get("enabled", "true"))
            for key in ("snapshots_ttl_seconds", "listing_ttl_seconds", "max_entries"):
                _parse_int(cache_section, key, cache_config)

        # Load [storage] section
        if parser.has_section("storage"):
            storage_section = parser["storage"]
            if storage_section.get("temp_dir"):
                storage_config["temp_dir"] = storage_section.get("temp_dir")

        # Load [logging] section
        if parser.has_section("logging"):
            log_section = parser["logging"]
            if log_section.get("level"):
                log_config["level"] = log_section.get("level")
            if log_section.get("file") is not None:
                log_config["file"] = log_section.get("file")
            if log_section.get("console"):
                log_config["console"] = _parse_bool(log_section.get("console", "false"))

    # Override with CLI arguments (cli_args take precedence)
    if cli_args.get("repo") is not None:
        repo_config["path"] = cli_args["repo"]
    if cli_args.get("password") is not None:
        repo_config["password"] = cli_args["password"]
    if cli_args.get("password_file") is not None:
        repo_config["password_file"] = cli_args["password_file"]
        # An explicit password file beats a password from the INI file
        if cli_args.get("password") is None:
            repo_config["password"] = None
    if cli_args.get("binary") is not None:
        repo_config["binary"] = cli_args["binary"]
    if cli_args.get("temp_dir") is not None:
        storage_config["temp_dir"] = cli_args["temp_dir"]
    if cli_args.get("debug"):
        log_config["level"] = "DEBUG"
        log_config["console"] = True

    # Resolve password: explicit value, then file, then environment
    password = repo_config["password"]
    if password is None and repo_config["password_file"]:
        password = read_password_file(repo_config["password_file"])
    if password is None:
        password = os.environ.get("RESTIC_PASSWORD")

    # Validate required fields
    missing_fields = []
    if not repo_config["path"]:
        missing_fields.append("path")
    if password is None:
        missing_fields.append("password")

    if missing_fields:
        raise ValueError(f"Missing required configuration fields: {', '.join(missing_fields)}")

    if cache_config["max_entries"] < 1:
        raise ValueError(
            f"Invalid max_entries: {cache_config['max_entries']}. Must be at least 1."
        )

    return AppConfig(
        repository=RepositoryConfig(
            path=repo_config["path"],
            password=password,
            binary=repo_config["binary"],
        ),
        cache=CacheConfig(
            enabled=cache_config["enabled"],
            snapshots_ttl_seconds=cache_config["snapshots_ttl_seconds"],
            listing_ttl_seconds=cache_config["listing_ttl_seconds"],
            max_entries=cache_config["max_entries"],
        ),
        storage=StorageConfig(temp_dir=storage_config["temp_dir"]),
        logging=LogConfig(
            level=log_config["level"],
            file=log_config["file"],
            console=log_config["console"],
        ),
    )
