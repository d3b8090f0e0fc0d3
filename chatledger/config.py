"""YAML configuration loader for ChatLedger.

Loads the seed config files from the config/ directory:
  projects.yaml (projects, partners, sender aliases)
  rules.yaml    (detector and matcher settings, expense categories)
"""

from datetime import timedelta
from pathlib import Path

import yaml

from chatledger.detect.expenses import DEFAULT_MIN_AMOUNT
from chatledger.detect.receipts import HIGH_WINDOW, MATCH_WINDOW

DEFAULT_CATEGORIES = [
    "Furniture",
    "Delivery/Shipping",
    "Construction materials",
    "Labor/Contractors",
    "Electrical",
    "Plumbing",
    "Paint/Finishing",
    "Appliances",
    "Decor",
    "Tools",
    "Permits/Fees",
    "Other",
]


class Config:
    """Loads and provides access to the YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._projects: list[dict] | None = None
        self._rules: dict | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def projects(self) -> list[dict]:
        if self._projects is None:
            data = self._load("projects.yaml")
            projects = data.get("projects", []) if isinstance(data, dict) else data
            for proj in projects:
                if "id" not in proj:
                    raise ValueError(f"Project without id in projects.yaml: {proj}")
            self._projects = projects
        return self._projects

    @property
    def rules(self) -> dict:
        if self._rules is None:
            self._rules = self._load("rules.yaml")
        return self._rules

    def project_by_id(self, project_id: str) -> dict | None:
        for proj in self.projects:
            if proj.get("id") == project_id:
                return proj
        return None

    @property
    def default_project(self) -> str | None:
        """The only configured project, or rules.yaml default_project."""
        if len(self.projects) == 1:
            return self.projects[0]["id"]
        return self.rules.get("default_project")

    def partner_aliases(self, project_id: str) -> dict[str, list[str]]:
        """Map partner id → alias list used to guess sender mappings."""
        proj = self.project_by_id(project_id) or {}
        return {
            p.get("id") or p["name"]: list(p.get("aliases", []))
            for p in proj.get("partners", [])
        }

    @property
    def categories(self) -> list[str]:
        return self.rules.get("categories", DEFAULT_CATEGORIES)

    @property
    def min_amount(self) -> float:
        """Numbers below this are item counts, not money. Default: 10."""
        return float(self.detection.get("min_amount", DEFAULT_MIN_AMOUNT))

    @property
    def strict_currency(self) -> bool:
        """Exclude candidates without a currency word by default. Default: on."""
        return bool(self.detection.get("strict_currency", True))

    @property
    def detection(self) -> dict:
        return self.rules.get("detection", {})

    @property
    def match_window(self) -> timedelta:
        seconds = self.rules.get("receipts", {}).get("match_window_seconds")
        return timedelta(seconds=seconds) if seconds is not None else MATCH_WINDOW

    @property
    def high_confidence_window(self) -> timedelta:
        seconds = self.rules.get("receipts", {}).get("high_confidence_seconds")
        return timedelta(seconds=seconds) if seconds is not None else HIGH_WINDOW
