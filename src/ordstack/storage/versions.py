"""Manifest of the bitcoind/ord versions installed alongside ordstack."""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

MANIFEST_FILE = "versions.json"


class VersionManifest:
    """``{component: version}`` map stored in ``versions.json``."""

    def __init__(self, state_dir: Path):
        self.path = state_dir / MANIFEST_FILE

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring corrupt version manifest %s: %s", self.path, e)
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def get(self, component: str) -> str | None:
        return self.load().get(component)

    def record(self, component: str, version: str) -> None:
        data = self.load()
        data[component] = version
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
