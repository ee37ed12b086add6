"""
Configuration for cloudbackup
"""
import os
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import Optional

from .errors import ConfigError

# ══════════════════════════════════════════════════════════════════════════════
#  DEFAULTS  ── overridden by the YAML profile
# ══════════════════════════════════════════════════════════════════════════════

CONFIG_FILENAME = ".cloudbackup"

SSH_PORT = 23  # Hetzner Storage Box; most other hosts use 22

# On every run the oldest N ledger entries are re-hashed locally and remotely.
CHECKSUMS_PER_RUN = 100
CHECKSUMS_FILE = "checksums.txt"

# If the lock file exists but no tracked artifact changed in this many minutes,
# the previous run is presumed dead and the lock is overridden.
MAX_LOCK_WAIT_MINUTES = 600

LOCK_FILE = ".update_in_progress"
LOCAL_FILES_LIST = "local_files.txt"
LOGS_DIR = "logs"

EXCLUDES = ("*.nomedia",)
REMOTE_EXCLUDES = (".hsh_history", ".ssh/")

CAPACITY_THRESHOLD = 80
PROTECT_MODE = "a-w"

# Timeouts (seconds)
TRANSFER_TIMEOUT = 6 * 3600
COMMAND_TIMEOUT = 600

# Retry settings for the SSH channel and status pings
RETRY_MAX = 3
RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt

# Characters that cannot be round-tripped through remote command strings
FORBIDDEN_PATH_CHARS = frozenset('"\\*>$')


@dataclass(frozen=True)
class BackupConfig:
    """Immutable run configuration, assembled once and passed to every component."""

    server: str
    user: str
    local_root: Path
    backup_dir: PurePosixPath
    state_dir: Path
    healthchecks_url: str
    port: int = SSH_PORT
    ssh_key: Optional[str] = None
    checksums_per_run: int = CHECKSUMS_PER_RUN
    checksums_file: str = CHECKSUMS_FILE
    max_lock_wait_minutes: int = MAX_LOCK_WAIT_MINUTES
    excludes: tuple[str, ...] = EXCLUDES
    remote_excludes: tuple[str, ...] = REMOTE_EXCLUDES
    capacity_threshold: int = CAPACITY_THRESHOLD
    protect_mode: str = PROTECT_MODE
    transfer_timeout: int = TRANSFER_TIMEOUT
    command_timeout: int = COMMAND_TIMEOUT
    hash_workers: int = 1
    profile_name: str = field(default="default", compare=False)

    # ── derived paths ──────────────────────────────────────────────────────

    @property
    def remote(self) -> str:
        return f"{self.user}@{self.server}"

    @property
    def ledger_path(self) -> Path:
        return self.state_dir / self.checksums_file

    @property
    def lock_path(self) -> Path:
        return self.state_dir / LOCK_FILE

    @property
    def local_files_path(self) -> Path:
        return self.state_dir / LOCAL_FILES_LIST

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / LOGS_DIR

    def log_path(self, kind: str, day: str) -> Path:
        """Daily log file, e.g. logs/2024-05-01_ERRORS.txt"""
        return self.logs_dir / f"{day}_{kind}.txt"

    @property
    def backup_root(self) -> Path:
        """Absolute local directory that is being backed up."""
        return self.local_root / self.backup_dir

    def ssh_command(self) -> list[str]:
        """ssh invocation used as rsync's remote shell."""
        cmd = ["ssh", "-p", str(self.port)]
        if self.ssh_key:
            cmd += ["-i", self.ssh_key]
        return cmd

    # ── construction ───────────────────────────────────────────────────────

    @classmethod
    def from_profile(cls, profile: dict, base_dir: Optional[Path] = None) -> "BackupConfig":
        """
        Build and validate a config from a merged profile dict.
        *base_dir* is the directory of the config file; relative state_dir
        values and the default state_dir resolve against it.
        """
        missing = [k for k in ("server", "local_root", "backup_dir", "healthchecks_url")
                   if not profile.get(k)]
        if "user" not in profile and "username" not in profile:
            missing.append("user")
        if missing:
            raise ConfigError(f"missing required config key(s): {', '.join(missing)}")

        base_dir = (base_dir or Path.cwd()).resolve()
        local_root = Path(str(profile["local_root"])).expanduser().resolve()
        backup_dir = PurePosixPath(str(profile["backup_dir"]).strip("/"))
        if backup_dir.is_absolute() or ".." in backup_dir.parts or not backup_dir.parts:
            raise ConfigError(f"backup_dir must be a relative path inside local_root: {backup_dir}")

        state_dir = Path(str(profile.get("state_dir", base_dir))).expanduser()
        if not state_dir.is_absolute():
            state_dir = base_dir / state_dir

        try:
            cfg = cls(
                server=str(profile["server"]),
                user=str(profile.get("user", profile.get("username"))),
                local_root=local_root,
                backup_dir=backup_dir,
                state_dir=state_dir,
                healthchecks_url=str(profile["healthchecks_url"]).rstrip("/"),
                port=int(profile.get("port", SSH_PORT)),
                ssh_key=str(profile["ssh_key"]) if profile.get("ssh_key") else None,
                checksums_per_run=int(profile.get("checksums_per_run", CHECKSUMS_PER_RUN)),
                checksums_file=str(profile.get("checksums_file", CHECKSUMS_FILE)),
                max_lock_wait_minutes=int(profile.get("max_lock_wait_minutes", MAX_LOCK_WAIT_MINUTES)),
                excludes=_str_tuple(profile.get("excludes", EXCLUDES)),
                remote_excludes=_str_tuple(profile.get("remote_excludes", REMOTE_EXCLUDES)),
                capacity_threshold=int(profile.get("capacity_threshold", CAPACITY_THRESHOLD)),
                protect_mode=str(profile.get("protect_mode", PROTECT_MODE)),
                transfer_timeout=int(profile.get("transfer_timeout", TRANSFER_TIMEOUT)),
                command_timeout=int(profile.get("command_timeout", COMMAND_TIMEOUT)),
                hash_workers=int(profile.get("hash_workers", 1)),
                profile_name=str(profile.get("name", "default")),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid config value: {exc}") from exc

        if cfg.checksums_per_run < 0:
            raise ConfigError("checksums_per_run must be >= 0")
        if cfg.max_lock_wait_minutes <= 0:
            raise ConfigError("max_lock_wait_minutes must be > 0")
        if cfg.hash_workers < 1:
            raise ConfigError("hash_workers must be >= 1")
        return cfg

    def with_overrides(self, **changes) -> "BackupConfig":
        return replace(self, **changes)


def _str_tuple(value) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in (value or ()))


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/cloudbackup/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for cloudbackup."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "cloudbackup"
    return Path.home() / ".config" / "cloudbackup"


def load_global_config() -> dict:
    """Load global defaults; a missing file means no defaults."""
    cfg_path = get_global_config_dir() / "config.yaml"
    if not cfg_path.is_file():
        return {}
    return load_config_file(cfg_path)


# ══════════════════════════════════════════════════════════════════════════════
#  PROJECT CONFIG FILE  ── .cloudbackup (searched upward)
# ══════════════════════════════════════════════════════════════════════════════

def find_config(start: Optional[Path] = None) -> Optional[Path]:
    """
    Search upward from *start* (default: cwd) for a .cloudbackup YAML file.
    Returns the Path if found, or None if no parent holds one.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config_file(path: Path) -> dict:
    """Parse a YAML config file and return its contents as a dict."""
    import yaml

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping")
    return data


def get_profile(data: dict, profile_name: str = "default") -> dict:
    """
    Extract a named profile from a .cloudbackup or config.yaml data dict.
    Falls back to the first profile if the named one is not found.
    Returns a flat profile dict merged with top-level defaults.
    """
    defaults = data.get("defaults", {}) or {}
    profiles = data.get("profiles", []) or []
    if not profiles:
        return dict(defaults)
    profile = next((p for p in profiles if p.get("name") == profile_name), None)
    if profile is None:
        profile = profiles[0]
    merged = dict(defaults)
    merged.update(profile)
    return merged


def load_backup_config(config_path: Optional[Path] = None,
                       profile_name: str = "default") -> BackupConfig:
    """Resolve the config file, merge global defaults and build a BackupConfig."""
    path = config_path or find_config()
    if path is None:
        raise ConfigError(f"no {CONFIG_FILENAME} file found in this directory or any parent")
    global_data = load_global_config()
    data = load_config_file(path)
    merged = dict(global_data.get("defaults", {}) or {})
    merged.update(get_profile(data, profile_name))
    return BackupConfig.from_profile(merged, base_dir=path.parent)
