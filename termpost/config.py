"""Application configuration."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

DEFAULT_DATA_DIR = Path.home() / ".config" / "termpost"


def _env_bool(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no", "off")


class Config(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    request_timeout: float = 30.0
    verify_tls: bool = True
    tick_interval: float = 0.1
    history_limit: int = 100
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, data_dir: Optional[Path] = None, **overrides) -> "Config":
        """Build a config from ``TERMPOST_*`` environment variables.

        Explicit arguments win over the environment.
        """
        values = {}
        if os.environ.get("TERMPOST_HOME"):
            values["data_dir"] = Path(os.environ["TERMPOST_HOME"]).expanduser()
        if os.environ.get("TERMPOST_TIMEOUT"):
            values["request_timeout"] = float(os.environ["TERMPOST_TIMEOUT"])
        if os.environ.get("TERMPOST_VERIFY_TLS"):
            values["verify_tls"] = _env_bool(os.environ["TERMPOST_VERIFY_TLS"])
        if os.environ.get("TERMPOST_LOG_LEVEL"):
            values["log_level"] = os.environ["TERMPOST_LOG_LEVEL"].upper()
        if data_dir is not None:
            values["data_dir"] = Path(data_dir).expanduser()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    @property
    def collections_dir(self) -> Path:
        return self.data_dir / "collections"

    @property
    def history_file(self) -> Path:
        return self.data_dir / "history.json"

    @property
    def environments_file(self) -> Path:
        return self.data_dir / "environments.json"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "termpost.log"

    def ensure_dirs(self):
        self.collections_dir.mkdir(parents=True, exist_ok=True)
