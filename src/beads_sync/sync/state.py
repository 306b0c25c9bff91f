"""Durable state persistence layer.

Manages the JSON documents that hold the pending-change queue and open
conflicts in the state directory (``.beads_sync/`` by default).  Each
document is a file named ``{kind}_{profile}.json``.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data, and a mutation is
  durable once ``save()`` returns.
* **Dict-based documents** -- callers own the schema; this layer only
  stamps ``version`` and ``saved_at``.
* **Corrupt files are not fatal** -- an unreadable document is logged and
  loaded as empty, mirroring the record codec's skip policy.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class StateFile:
    """Load and save one JSON state document.

    Args:
        state_dir: Directory holding state files.
        kind: Document kind, e.g. ``"pending"`` or ``"conflicts"``.
        profile: Profile name, usually ``owner__repo``.
    """

    def __init__(self, state_dir: Path, kind: str, profile: str) -> None:
        self._state_dir = state_dir
        self.kind = kind
        self.profile = profile

    @property
    def path(self) -> Path:
        """Return the path to this document."""
        return self._state_dir / f"{self.kind}_{self.profile}.json"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> dict:
        """Load the document from disk.

        Returns:
            The stored dict.  A missing or unreadable file yields an empty
            document ``{"version": 1, "saved_at": None}``.
        """
        path = self.path
        if not path.exists():
            return self._empty()
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error(
                "Could not read state file %s (%s) -- starting empty",
                path,
                exc,
            )
            return self._empty()
        if not isinstance(data, dict):
            logger.error(
                "State file %s has non-dict root -- starting empty", path
            )
            return self._empty()
        return data

    def save(self, data: dict) -> None:
        """Persist *data* atomically.

        Creates the state directory when needed and stamps ``version`` and
        ``saved_at`` (UTC ISO 8601) on *data* before writing.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        data["version"] = STATE_VERSION
        data["saved_at"] = datetime.now(timezone.utc).isoformat()

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _empty(self) -> dict:
        return {"version": STATE_VERSION, "saved_at": None}
