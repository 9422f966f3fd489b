"""Persistence of the discovered Xero tenant ID between runs."""

from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger()


class TenantStore:
    """Remembers the tenant ID in a small text file.

    File problems only cost a connections lookup on the next run, so they
    are logged and otherwise ignored.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[str]:
        try:
            if self.path.exists():
                return self.path.read_text(encoding="utf-8").strip() or None
        except OSError as e:
            logger.warning("Could not read tenant ID", path=str(self.path), error=str(e))
        return None

    def save(self, tenant_id: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(tenant_id, encoding="utf-8")
        except OSError as e:
            logger.warning("Could not save tenant ID", path=str(self.path), error=str(e))

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove tenant ID", path=str(self.path), error=str(e))
