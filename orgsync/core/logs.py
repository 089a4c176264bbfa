"""Debug log download into ``<project>/debug/logs``."""

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .project import Project


logger = logging.getLogger(__name__)


class LogService:
    def __init__(self, project: "Project") -> None:
        self.project = project

    @property
    def logs_dir(self) -> Path:
        return Path(self.project.path) / "debug" / "logs"

    def download_log(self, log_id: str) -> Path:
        """Fetch one debug log and write it to ``debug/logs/<id>.log``.

        Returns:
            Path of the written log file
        """
        body = self.project.client.download_log(log_id)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        target = self.logs_dir / f"{log_id}.log"
        target.write_text(body, encoding="utf-8")
        logger.debug("downloaded log %s to %s", log_id, target)
        return target
