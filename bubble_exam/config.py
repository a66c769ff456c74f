from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "db_path": "exams.db",
    "upload_dir": "uploads",
    "max_upload_bytes": 5 * 1024 * 1024,
    "default_template": "thpt_toan",
    "default_duration": 90,
    "history_limit": 50,
    "exam_files": [],
}


@dataclass
class Settings:
    db_path: str = DEFAULTS["db_path"]
    upload_dir: str = DEFAULTS["upload_dir"]
    max_upload_bytes: int = DEFAULTS["max_upload_bytes"]
    default_template: str = DEFAULTS["default_template"]
    default_duration: int = DEFAULTS["default_duration"]
    history_limit: int = DEFAULTS["history_limit"]
    exam_files: list[str] = field(default_factory=lambda: list(DEFAULTS["exam_files"]))

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    @property
    def upload_full_path(self) -> Path:
        return self.project_root / self.upload_dir

    def resolved_exam_files(self) -> list[Path]:
        if self.exam_files:
            root = self.project_root
            return [root / f for f in self.exam_files]
        return sorted(self.data_dir.glob("*.json"))

    def to_dict(self) -> dict:
        return {
            "db_path": self.db_path,
            "upload_dir": self.upload_dir,
            "max_upload_bytes": self.max_upload_bytes,
            "default_template": self.default_template,
            "default_duration": self.default_duration,
            "history_limit": self.history_limit,
            "exam_files": self.exam_files,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
