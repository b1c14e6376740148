"""
Checkpoint persistence for resumable seeding.

One JSON document per batch id, one directory per environment. Saves are
whole-document replacements written to a temporary file and renamed into
place, so a crash never leaves a half-written checkpoint behind.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from seeder.core.errors import CorruptCheckpointError
from seeder.core.models import CheckpointDocument, CheckpointSummary
from seeder.observability import metrics
from seeder.observability.logger import get_logger
from seeder.utils.validation import validate_batch_id

logger = get_logger(__name__)


class ProgressStore(ABC):
    """
    Durable key-value storage of CheckpointDocuments keyed by batch id.

    Concurrent writers for the same batch id are not supported.
    """

    @abstractmethod
    def save(self, doc: CheckpointDocument) -> None:
        """Persist the full document, replacing any prior one for its batch id."""

    @abstractmethod
    def load(self, batch_id: str) -> CheckpointDocument | None:
        """
        Load a checkpoint.

        Returns:
            The document, or None if no checkpoint exists

        Raises:
            CorruptCheckpointError: If a checkpoint exists but cannot be parsed
        """

    @abstractmethod
    def delete(self, batch_id: str) -> None:
        """Remove a checkpoint; a missing checkpoint is not an error."""

    @abstractmethod
    def list(self) -> list[CheckpointSummary]:
        """Enumerate stored checkpoints, newest first."""


class FileProgressStore(ProgressStore):
    """
    ProgressStore backed by JSON files.

    Layout: ``<root>/<environment>/<batch_id>.json``
    """

    SUFFIX = ".json"

    def __init__(self, root: str | Path = ".progress", environment: str = "staging"):
        """
        Initialize file progress store.

        Args:
            root: Base directory for checkpoints
            environment: Environment name; each environment gets its own directory
        """
        self.root = Path(root)
        self.environment = validate_batch_id(environment, field_name="environment")
        self.directory = self.root / self.environment

    def path_for(self, batch_id: str) -> Path:
        batch_id = validate_batch_id(batch_id)
        return self.directory / f"{batch_id}{self.SUFFIX}"

    def save(self, doc: CheckpointDocument) -> None:
        path = self.path_for(doc.batch_id)
        self.directory.mkdir(parents=True, exist_ok=True)

        payload = doc.model_dump_json(indent=2)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{doc.batch_id}.", suffix=".tmp", dir=self.directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            metrics.increment_counter(
                metrics.checkpoint_operations_total, operation="save", status="error"
            )
            Path(tmp_name).unlink(missing_ok=True)
            raise

        metrics.increment_counter(
            metrics.checkpoint_operations_total, operation="save", status="success"
        )
        logger.debug(
            "Checkpoint saved",
            extra={"batch_id": doc.batch_id, "path": str(path)},
        )

    def load(self, batch_id: str) -> CheckpointDocument | None:
        path = self.path_for(batch_id)
        if not path.exists():
            return None

        try:
            raw = path.read_text(encoding="utf-8")
            doc = CheckpointDocument.model_validate_json(raw)
        except (OSError, UnicodeDecodeError, PydanticValidationError) as e:
            metrics.increment_counter(
                metrics.checkpoint_operations_total, operation="load", status="corrupt"
            )
            raise CorruptCheckpointError(batch_id, str(e)) from e

        if doc.batch_id != batch_id:
            raise CorruptCheckpointError(
                batch_id, f"document belongs to batch {doc.batch_id}"
            )

        metrics.increment_counter(
            metrics.checkpoint_operations_total, operation="load", status="success"
        )
        return doc

    def delete(self, batch_id: str) -> None:
        path = self.path_for(batch_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            metrics.increment_counter(
                metrics.checkpoint_operations_total, operation="delete", status="error"
            )
            logger.warning(
                f"Could not delete checkpoint: {e}",
                extra={"batch_id": batch_id, "path": str(path)},
            )
            return

        metrics.increment_counter(
            metrics.checkpoint_operations_total, operation="delete", status="success"
        )

    def list(self) -> list[CheckpointSummary]:
        if not self.directory.is_dir():
            return []

        summaries = []
        for path in self.directory.glob(f"*{self.SUFFIX}"):
            batch_id = path.name[: -len(self.SUFFIX)]
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                summary = CheckpointSummary(batch_id=batch_id, timestamp=data["timestamp"])
            except (OSError, ValueError, KeyError, TypeError, PydanticValidationError) as e:
                # json.JSONDecodeError is a ValueError
                logger.warning(
                    f"Skipping unreadable checkpoint: {e}",
                    extra={"path": str(path)},
                )
                continue
            summaries.append(summary)

        summaries.sort(key=lambda s: s.timestamp, reverse=True)
        return summaries
