"""JSON persistence of usage windows between CLI invocations."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path

from ai_provider.orchestrator.usage import utc_now

logger = logging.getLogger(__name__)

USAGE_STATE_VERSION = 1


class UsageStateStore:
    """Load and atomically save per-provider usage snapshots."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, dict[str, object]]:
        """Return ``{provider: snapshot}``; unreadable state yields an empty mapping."""

        if not self.path.exists():
            logger.debug("Usage state file does not exist: %s", self.path)
            return {}
        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            logger.warning("Ignoring unreadable usage state %s: %s", self.path, error)
            return {}

        if not isinstance(payload, dict) or payload.get("version") != USAGE_STATE_VERSION:
            logger.warning("Ignoring usage state %s with unsupported format", self.path)
            return {}
        providers = payload.get("providers")
        if not isinstance(providers, dict):
            logger.warning("Ignoring usage state %s without providers section", self.path)
            return {}
        return {
            str(name): snapshot
            for name, snapshot in providers.items()
            if isinstance(snapshot, dict)
        }

    def save(self, snapshot: Mapping[str, Mapping[str, object]]) -> None:
        """Write state via a temp file in the same directory, then replace."""

        payload = {
            "version": USAGE_STATE_VERSION,
            "updated_at": utc_now().isoformat(),
            "providers": {name: dict(windows) for name, windows in snapshot.items()},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            dir=self.path.parent,
        )
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
                handle.write("\n")
            temp_path.replace(self.path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        logger.debug("Usage state saved to %s", self.path)
