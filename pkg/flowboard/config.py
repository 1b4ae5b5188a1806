# Flowboard: configuration
# Override via flowboard.yaml, FLOWBOARD_* environment variables or CLI args.

import os
import logging
import yaml
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import List, Optional

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent / "flowboard.yaml"


@dataclass
class Config:
    """Runtime configuration for the board core and server."""

    # Storage
    db_path: str = "~/.local/share/flowboard/flowboard.db"

    # Calendar
    week_start_day: int = 0  # 0 = Sunday ... 6 = Saturday

    # Boards
    default_columns: List[str] = field(default_factory=lambda: ["To Do", "In Progress", "Done"])
    done_column_name: str = "Done"
    in_progress_column_name: str = "In Progress"
    auto_move_on_complete: bool = True

    # Agenda
    hide_completed_in_agenda: bool = False

    # Server
    api_secret: str = ""
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    def resolve(self):
        """Apply environment overrides, expand ~ and sanity-check values."""
        env_db = os.environ.get("FLOWBOARD_DB")
        if env_db:
            self.db_path = env_db
        env_secret = os.environ.get("FLOWBOARD_API_SECRET")
        if env_secret:
            self.api_secret = env_secret

        if self.db_path != ":memory:":
            self.db_path = str(Path(self.db_path).expanduser())

        try:
            day = int(self.week_start_day)
        except (TypeError, ValueError):
            logger.warning("week_start_day %r is not a number, using Sunday", self.week_start_day)
            day = 0
        if not 0 <= day <= 6:
            logger.warning("week_start_day %s out of range, using Sunday", day)
            day = 0
        self.week_start_day = day

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                known = {fld.name for fld in fields(cls)}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (OSError, TypeError, AttributeError, yaml.YAMLError) as e:
                logger.warning("Could not read %s (%s), using defaults", cfg_path, e)
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve()
        return cfg
