"""
Configuration dataclasses for the share redirect control plane.

This module defines all configuration structures used throughout the system,
including on-disk paths, cache limits, retry behavior, DNS and probe
timeouts, packet-filter commands and logging. Values are read from the
process environment, optionally seeded from a `.env` file.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "SHARE_REDIRECT_"
DEFAULT_BASE_DIR = Path("/opt/share-redirect")


@dataclass
class PathsConfig:
    """On-disk locations shared by the mount helper and the watchdog."""

    base_dir: Path = DEFAULT_BASE_DIR
    data_dir: Path = DEFAULT_BASE_DIR / "data"
    mountmap_file: Path = DEFAULT_BASE_DIR / "data" / "mountmap"
    random_seed_file: Path = DEFAULT_BASE_DIR / "data" / "randbytes"
    cache_file: Path = DEFAULT_BASE_DIR / ".cache"
    log_file: Path = DEFAULT_BASE_DIR / "data" / "share-redirect.log"
    hosts_file: Path = Path("/etc/hosts")

    @classmethod
    def under(cls, base_dir: Path) -> "PathsConfig":
        """Build the default layout rooted at `base_dir`."""
        data_dir = base_dir / "data"
        return cls(
            base_dir=base_dir,
            data_dir=data_dir,
            mountmap_file=data_dir / "mountmap",
            random_seed_file=data_dir / "randbytes",
            cache_file=base_dir / ".cache",
            log_file=data_dir / "share-redirect.log",
        )


@dataclass
class CacheConfig:
    """Address cache limits."""

    size_limit: int = 10
    ttl_seconds: int = 86400


@dataclass
class RetryConfig:
    """Retry behavior for transient resolution failures."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    backoff_factor: float = 1.0
    max_delay_seconds: float = 60.0


@dataclass
class DNSConfig:
    """DNS query settings."""

    query_timeout_seconds: float = 5.0
    max_cname_hops: int = 20


@dataclass
class ProbeConfig:
    """Reachability probe settings."""

    port: int = 2048
    timeout_seconds: float = 3.0


@dataclass
class NATConfig:
    """Packet-filter settings for DNAT rules."""

    iptables_binary: str = "iptables"
    conntrack_binary: str = "conntrack"
    table: str = "nat"
    chain: str = "OUTPUT"
    xtables_wait_seconds: int = 60


@dataclass
class CommandConfig:
    """External command execution settings."""

    timeout_seconds: float = 90.0
    chattr_binary: str = "chattr"
    immutable_mountmap: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    verbose: bool = False
    output_format: str = "text"  # 'json' or 'text'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    dns: DNSConfig = field(default_factory=DNSConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    nat: NATConfig = field(default_factory=NATConfig)
    commands: CommandConfig = field(default_factory=CommandConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _env(name: str) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _int_env(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() not in ("0", "false", "no", "off")


def _path_env(name: str, default: Path) -> Path:
    value = _env(name)
    return Path(value) if value is not None else default


def load_config(env_file: Optional[Path] = None) -> SystemConfig:
    """
    Build the system configuration from the environment.

    Variables already present in the environment win over those in the
    `.env` file, matching python-dotenv's default.

    Args:
        env_file: Optional path to a `.env` file; when None, python-dotenv
                  searches the working directory.

    Returns:
        SystemConfig with environment overrides applied
    """
    load_dotenv(dotenv_path=env_file)

    paths = PathsConfig.under(_path_env("BASE_DIR", DEFAULT_BASE_DIR))
    paths = PathsConfig(
        base_dir=paths.base_dir,
        data_dir=_path_env("DATA_DIR", paths.data_dir),
        mountmap_file=_path_env("MOUNTMAP_FILE", paths.mountmap_file),
        random_seed_file=_path_env("RANDOM_SEED_FILE", paths.random_seed_file),
        cache_file=_path_env("CACHE_FILE", paths.cache_file),
        log_file=_path_env("LOG_FILE", paths.log_file),
        hosts_file=_path_env("HOSTS_FILE", paths.hosts_file),
    )

    return SystemConfig(
        paths=paths,
        cache=CacheConfig(
            size_limit=_int_env("CACHE_SIZE_LIMIT", 10),
            ttl_seconds=_int_env("CACHE_TTL_SECONDS", 86400),
        ),
        retry=RetryConfig(
            max_retries=_int_env("DNS_RETRIES", 3),
            base_delay_seconds=_float_env("DNS_RETRY_DELAY_SECONDS", 1.0),
        ),
        dns=DNSConfig(
            query_timeout_seconds=_float_env("DNS_TIMEOUT_SECONDS", 5.0),
            max_cname_hops=_int_env("DNS_MAX_CNAME_HOPS", 20),
        ),
        probe=ProbeConfig(
            port=_int_env("PROBE_PORT", 2048),
            timeout_seconds=_float_env("PROBE_TIMEOUT_SECONDS", 3.0),
        ),
        nat=NATConfig(
            iptables_binary=_env("IPTABLES") or "iptables",
            conntrack_binary=_env("CONNTRACK") or "conntrack",
        ),
        commands=CommandConfig(
            timeout_seconds=_float_env("COMMAND_TIMEOUT_SECONDS", 90.0),
            immutable_mountmap=_bool_env("IMMUTABLE_MOUNTMAP", True),
        ),
        logging=LoggingConfig(
            verbose=_bool_env("VERBOSE", False),
            output_format=_env("LOG_FORMAT") or "text",
        ),
    )


def config_to_dict(config: SystemConfig) -> dict:
    """Convert configuration to a JSON-serializable dictionary."""
    data = asdict(config)
    data["paths"] = {key: str(value) for key, value in data["paths"].items()}
    return data
