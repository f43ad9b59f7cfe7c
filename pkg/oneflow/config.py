# OneFlow configuration
# Override paths and the team roster via oneflow.yaml or ONEFLOW_* env vars.

import logging
import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .schema import Division

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.cwd() / "oneflow.yaml"


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class Team:
    """A named team; every member of it works in the team's division."""
    team_id: str
    name: str
    division: Division
    members: List[str] = field(default_factory=list)


@dataclass
class Config:
    """Runtime configuration for the board service and API."""

    db_path: str = "~/.local/share/oneflow/oneflow.db"

    # HTTP API
    host: str = "127.0.0.1"
    port: int = 3001
    api_secret: str = ""            # empty = writes are refused (503)

    # Roster (empty = divisions are taken on trust from callers)
    teams: List[Team] = field(default_factory=list)

    def resolve(self):
        """Apply env overrides and expand ~."""
        self.db_path = os.environ.get("ONEFLOW_DB", self.db_path)
        self.api_secret = os.environ.get("ONEFLOW_API_SECRET", self.api_secret)
        self.db_path = str(Path(self.db_path).expanduser())

    @property
    def roster(self) -> Dict[str, Division]:
        """member id -> division, across all teams."""
        roster: Dict[str, Division] = {}
        for team in self.teams:
            for member_id in team.members:
                known = roster.get(member_id)
                if known is not None and known != team.division:
                    raise ConfigError(
                        f"Member '{member_id}' is listed in both {known.value} and "
                        f"{team.division.value} teams"
                    )
                roster[member_id] = team.division
        return roster

    @property
    def team_divisions(self) -> Dict[str, Division]:
        """team id -> division."""
        return {t.team_id: t.division for t in self.teams}

    def team(self, team_id: str) -> Optional[Team]:
        for t in self.teams:
            if t.team_id == team_id:
                return t
        return None

    @staticmethod
    def _parse_teams(raw: list) -> List[Team]:
        teams = []
        for i, t in enumerate(raw or []):
            if not isinstance(t, dict) or "id" not in t:
                raise ConfigError(f"teams[{i}] must be a mapping with an 'id'")
            try:
                division = Division(str(t.get("division", "")).lower())
            except ValueError:
                raise ConfigError(
                    f"Team '{t['id']}' has invalid division {t.get('division')!r}. "
                    f"Available: {[d.value for d in Division]}"
                ) from None
            teams.append(Team(
                team_id=str(t["id"]),
                name=str(t.get("name", t["id"])),
                division=division,
                members=[str(m) for m in t.get("members", [])],
            ))
        return teams

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if not cfg_path.exists():
            if path:
                logger.warning(f"Config file {cfg_path} not found, using defaults")
            cfg = cls()
            cfg.resolve()
            return cfg

        try:
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {cfg_path}: {e}") from e

        server = data.get("server", {}) or {}
        cfg = cls(
            db_path=data.get("database", cls.db_path),
            host=server.get("host", cls.host),
            port=int(server.get("port", cls.port)),
            api_secret=server.get("api_secret", cls.api_secret) or "",
            teams=cls._parse_teams(data.get("teams", [])),
        )
        cfg.roster  # fail fast on a member listed in two divisions
        cfg.resolve()
        return cfg
