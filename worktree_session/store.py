"""Persistent store for the session document.

Owns the single JSON file holding every workspace. Loading never raises: a
missing file is created with an empty document, a corrupt one is replaced in
memory by an empty document. Saving rewrites the whole file atomically (temp
file + rename) and reports failure as False.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .errors import ErrorCode, PersistenceError
from .logging_config import log_timing
from .migration import migrate_document
from .models.session import SessionDocument

logger = logging.getLogger(__name__)


class PersistentStore:
    """Load/save access to the session document file.

    There is no partial update API: callers load, mutate in memory, and save
    the whole document. Serializing those cycles is the caller's job (see
    WorkspaceManager).
    """

    def __init__(self, config_file: Path):
        """Initialize the store.

        Args:
            config_file: Path to the session document (e.g. ~/.config/worktree-session/config.json)
        """
        self.config_file = Path(config_file)
        self.last_error: Optional[PersistenceError] = None

    def load(self) -> SessionDocument:
        """Read, migrate and validate the session document.

        Returns:
            The current document, or an empty one if the file is missing
            or cannot be parsed
        """
        if not self.config_file.exists():
            logger.info(f"Session document does not exist: {self.config_file}, creating it")
            document = SessionDocument()
            if self._write(document, exclusive=True) or not self.config_file.exists():
                return document
            # Another writer created the file first; read theirs
            logger.debug(f"Session document {self.config_file} appeared concurrently")

        with log_timing("Load session document", logger):
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    raw = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                self._record(ErrorCode.DOCUMENT_PARSE_ERROR, str(e))
                logger.error(f"Failed to parse session document {self.config_file}: {e}")
                return SessionDocument()
            except OSError as e:
                self._record(ErrorCode.FILE_READ_ERROR, str(e))
                logger.error(f"Failed to read session document {self.config_file}: {e}")
                return SessionDocument()

            try:
                document = SessionDocument.model_validate(migrate_document(raw))
            except ValidationError as e:
                self._record(ErrorCode.DOCUMENT_PARSE_ERROR, str(e))
                logger.error(f"Session document {self.config_file} has an invalid shape: {e}")
                return SessionDocument()

        self.last_error = None
        return document

    def save(self, document: SessionDocument) -> bool:
        """Write the whole document atomically.

        Args:
            document: Document to persist

        Returns:
            True on success, False on any I/O failure
        """
        return self._write(document)

    def _write(self, document: SessionDocument, exclusive: bool = False) -> bool:
        """Write the document through a temp file.

        Args:
            document: Document to persist
            exclusive: Only create the file, never replace an existing one
                (hard link instead of rename)

        Returns:
            True if the file now holds ``document``; False on I/O failure or,
            with ``exclusive``, when the file already existed
        """
        document.refresh_grid()

        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)

            fd, temp_path = tempfile.mkstemp(
                dir=self.config_file.parent, prefix=".session-", suffix=".json"
            )

            try:
                with log_timing("Save session document", logger):
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(document.to_json_dict(), f, indent=2)
                        f.write("\n")
                        f.flush()
                        os.fsync(f.fileno())

                    if exclusive:
                        os.link(temp_path, self.config_file)
                    else:
                        # Atomic rename
                        os.replace(temp_path, self.config_file)
            finally:
                if Path(temp_path).exists():
                    os.unlink(temp_path)

        except FileExistsError:
            return False
        except OSError as e:
            self._record(ErrorCode.FILE_WRITE_ERROR, str(e))
            logger.error(f"Failed to write session document {self.config_file}: {e}")
            return False

        self.last_error = None
        logger.debug(f"Saved session document: {len(document.workspaces)} workspace(s)")
        return True

    def _record(self, code: ErrorCode, reason: str) -> None:
        self.last_error = PersistenceError(str(self.config_file), reason, code=code)
