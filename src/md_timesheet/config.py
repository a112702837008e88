from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .overlap import WEEK_STARTS

DEFAULT_CONFIG_DIR = Path.home() / ".md_timesheet"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_FOLDER = DEFAULT_CONFIG_DIR / "TimeTracking"
CONFIG_ENV_VAR = "MD_TIMESHEET_CONFIG"


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    color: str = "#4f46e5"
    rate: float | None = None
    currency: str = "EUR"
    rate_type: str = "hourly"  # hourly | daily
    archived: bool = False


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    client: str | None = None
    color: str = "#4f46e5"
    archived: bool = False


@dataclass(frozen=True)
class Activity:
    id: str
    name: str
    color: str = "#6b7280"


@dataclass(frozen=True)
class Settings:
    folder: Path
    auto_create_folder: bool = True
    week_start: str = "monday"
    description_max_length: int = 200  # 0 = no limit
    require_client: bool = True
    default_client: str | None = None
    default_project: str | None = None
    default_activity: str | None = None
    debug: bool = False
    clients: tuple[Client, ...] = field(default_factory=tuple)
    projects: tuple[Project, ...] = field(default_factory=tuple)
    activities: tuple[Activity, ...] = field(default_factory=tuple)

    def find_client(self, value: str) -> Client | None:
        return _find(self.clients, value)

    def find_project(self, value: str) -> Project | None:
        return _find(self.projects, value)

    def find_activity(self, value: str) -> Activity | None:
        return _find(self.activities, value)


def _find(items, value: str):
    v = (value or "").strip().lower()
    for item in items:
        if item.id.strip().lower() == v or item.name.strip().lower() == v:
            return item
    return None


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


def default_config_path() -> Path:
    return Path(os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH).expanduser()


def load_settings(path: Path) -> Settings:
    if not path.exists():
        raise ConfigError(f"Config not found at {path}. Run 'md-timesheet init' first.")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config at {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config at {path} must be a mapping.")
    return settings_from_dict(data, base_dir=path.parent)


def save_settings(path: Path, settings: Settings) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(settings_to_dict(settings), sort_keys=False, allow_unicode=True),
        encoding="utf-8",
    )


def settings_from_dict(data: dict[str, Any], *, base_dir: Path | None = None) -> Settings:
    folder = Path(str(data.get("folder") or DEFAULT_FOLDER)).expanduser()
    if not folder.is_absolute() and base_dir is not None:
        folder = base_dir / folder
    week_start = str(data.get("week_start") or "monday").strip().lower()
    if week_start not in WEEK_STARTS:
        raise ConfigError(f"week_start must be one of {', '.join(WEEK_STARTS)}, got {week_start!r}.")
    try:
        description_max_length = max(0, int(data.get("description_max_length", 200) or 0))
    except (TypeError, ValueError) as exc:
        raise ConfigError("description_max_length must be a whole number.") from exc
    return Settings(
        folder=folder,
        auto_create_folder=bool(data.get("auto_create_folder", True)),
        week_start=week_start,
        description_max_length=description_max_length,
        require_client=bool(data.get("require_client", True)),
        default_client=_optional_str(data.get("default_client")),
        default_project=_optional_str(data.get("default_project")),
        default_activity=_optional_str(data.get("default_activity")),
        debug=bool(data.get("debug", False)),
        clients=tuple(_client(x) for x in data.get("clients") or []),
        projects=tuple(_project(x) for x in data.get("projects") or []),
        activities=tuple(_activity(x) for x in data.get("activities") or []),
    )


def settings_to_dict(settings: Settings) -> dict[str, Any]:
    return {
        "folder": str(settings.folder),
        "auto_create_folder": settings.auto_create_folder,
        "week_start": settings.week_start,
        "description_max_length": settings.description_max_length,
        "require_client": settings.require_client,
        "default_client": settings.default_client,
        "default_project": settings.default_project,
        "default_activity": settings.default_activity,
        "debug": settings.debug,
        "clients": [asdict(client) for client in settings.clients],
        "projects": [asdict(project) for project in settings.projects],
        "activities": [asdict(activity) for activity in settings.activities],
    }


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _catalog_item(value: object, kind: str) -> dict[str, Any]:
    # Plain strings are accepted as shorthand for {name: ...}.
    if isinstance(value, str):
        value = {"name": value}
    if not isinstance(value, dict):
        raise ConfigError(f"Each {kind} must be a name or a mapping, got {value!r}.")
    name = str(value.get("name") or value.get("id") or "").strip()
    if not name:
        raise ConfigError(f"A {kind} entry is missing its name.")
    item = dict(value)
    item["name"] = name
    item["id"] = str(value.get("id") or slugify(name))
    return item


def _client(value: object) -> Client:
    item = _catalog_item(value, "client")
    rate_type = str(item.get("rate_type") or "hourly")
    if rate_type not in {"hourly", "daily"}:
        raise ConfigError(f"Client {item['id']}: rate_type must be hourly or daily.")
    try:
        rate = float(item["rate"]) if item.get("rate") is not None else None
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Client {item['id']}: rate must be a number.") from exc
    return Client(
        id=item["id"],
        name=item["name"],
        color=str(item.get("color") or "#4f46e5"),
        rate=rate,
        currency=str(item.get("currency") or "EUR"),
        rate_type=rate_type,
        archived=bool(item.get("archived", False)),
    )


def _project(value: object) -> Project:
    item = _catalog_item(value, "project")
    return Project(
        id=item["id"],
        name=item["name"],
        client=_optional_str(item.get("client")),
        color=str(item.get("color") or "#4f46e5"),
        archived=bool(item.get("archived", False)),
    )


def _activity(value: object) -> Activity:
    item = _catalog_item(value, "activity")
    return Activity(
        id=item["id"],
        name=item["name"],
        color=str(item.get("color") or "#6b7280"),
    )
