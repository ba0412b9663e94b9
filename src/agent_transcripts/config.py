"""Configuration for transcript conversion."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from .models import GitContext
from .pricing import ModelPricing, PricingTable, coerce_pricing

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agent-transcripts"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"


class _Unset:
    """Marker for an option that was not supplied."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass
class ConvertOptions:
    """Injectable settings for one conversion call.

    ``git_context`` left as ``UNSET`` means "infer it"; an explicit ``None``
    is emitted as a null git context.
    """

    pricing: Optional[dict[str, Union[ModelPricing, dict]]] = None
    now: Optional[datetime] = None
    git_context: Union[GitContext, None, Any] = UNSET
    client_version: Optional[str] = None
    # Cline only; other producers record these themselves
    cwd: Optional[str] = None
    task_id: Optional[str] = None
    metadata: Optional[dict] = None
    _pricing_table: Optional[PricingTable] = field(default=None, init=False, repr=False)

    @property
    def pricing_table(self) -> PricingTable:
        if self._pricing_table is None:
            self._pricing_table = coerce_pricing(self.pricing)
        return self._pricing_table

    @property
    def has_git_context(self) -> bool:
        return self.git_context is not UNSET


class Config:
    """Persisted settings for the command-line front end."""

    def __init__(
        self,
        pricing_file: Optional[Path] = None,
        blobs_dir: Optional[Path] = None,
    ):
        self.pricing_file = pricing_file
        self.blobs_dir = blobs_dir

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from file."""
        path = config_path or DEFAULT_CONFIG_FILE

        if not path.exists():
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return cls(
                pricing_file=Path(data["pricing_file"])
                if data.get("pricing_file")
                else None,
                blobs_dir=Path(data["blobs_dir"]) if data.get("blobs_dir") else None,
            )
        except (json.JSONDecodeError, KeyError, AttributeError):
            return cls()

    def save(self, config_path: Optional[Path] = None):
        """Save configuration to file."""
        path = config_path or DEFAULT_CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "pricing_file": str(self.pricing_file) if self.pricing_file else None,
            "blobs_dir": str(self.blobs_dir) if self.blobs_dir else None,
        }

        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
