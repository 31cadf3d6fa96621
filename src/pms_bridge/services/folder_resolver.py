"""
Patient folder resolution for the OpenDental image store.

OpenDental keeps patient documents under <root>/<Letter>/<FolderName>, where
Letter is the first letter of the surname and FolderName usually starts with
LastFirst followed by a PatNum suffix (e.g. "A/AllenAllowed_01").

Matching is case-insensitive and enumerates directories in sorted order so
the same tree always resolves to the same folder.
"""

import fnmatch
import glob
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class FolderResolutionError(Exception):
    """The image root is missing or a folder could not be created."""

    pass


class PatientFolderResolver:
    """Locate (or create) the image folder of a patient by name."""

    def __init__(self, image_root: Path | str):
        self.image_root = Path(image_root)

    @staticmethod
    def _split_name(patient_name: str) -> list[str]:
        tokens = patient_name.split()
        if not tokens:
            raise ValueError("Patient name must not be empty")
        return tokens

    def _check_root(self) -> None:
        if not self.image_root.is_dir():
            raise FolderResolutionError(f"Image root does not exist: {self.image_root}")

    @staticmethod
    def _match(bucket: Path, pattern: str) -> list[Path]:
        pattern = pattern.lower()
        return [
            entry
            for entry in sorted(bucket.iterdir(), key=lambda p: p.name)
            if entry.is_dir() and fnmatch.fnmatchcase(entry.name.lower(), pattern)
        ]

    def resolve(self, patient_name: str) -> Path | None:
        """
        Find an existing folder for the patient.

        Args:
            patient_name: Free-text "First Last" (middle names are ignored)

        Returns:
            Folder path, or None when no folder matches

        Raises:
            ValueError: Empty name
            FolderResolutionError: Image root missing
        """
        tokens = self._split_name(patient_name)
        self._check_root()

        if len(tokens) == 1:
            token = tokens[0]
            bucket = self.image_root / token[0].upper()
            if not bucket.is_dir():
                logger.debug("Bucket %s not found for %s", bucket, token)
                return None
            matches = self._match(bucket, f"*{glob.escape(token)}*")
            return matches[0] if matches else None

        first, last = tokens[0], tokens[-1]
        bucket = self.image_root / last[0].upper()
        if not bucket.is_dir():
            logger.debug("Bucket %s not found for %s", bucket, patient_name)
            return None

        # Names are literal text inside the patterns
        first_lit, last_lit = glob.escape(first), glob.escape(last)
        patterns = (
            f"{last_lit}{first_lit}*",
            f"{first_lit}{last_lit}*",
            f"{last_lit}*",
            f"*{last_lit}*",
            f"*{first_lit}*",
        )
        for pattern in patterns:
            matches = self._match(bucket, pattern)
            if not matches:
                continue
            if len(matches) > 1:
                for match in matches:
                    lower = match.name.lower()
                    if first.lower() in lower and last.lower() in lower:
                        return match
            return matches[0]

        return None

    def resolve_or_create(self, patient_name: str) -> Path:
        """
        Find the patient's folder, creating <Letter>/<NameWithoutSpaces> on miss.

        Raises:
            ValueError: Empty name
            FolderResolutionError: Image root missing or folder creation failed
        """
        existing = self.resolve(patient_name)
        if existing is not None:
            logger.debug("Resolved %s to %s", patient_name, existing)
            return existing

        tokens = self._split_name(patient_name)
        folder = self.image_root / tokens[-1][0].upper() / "".join(tokens)
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FolderResolutionError(f"Could not create patient folder {folder}: {e}") from e

        logger.info("Created patient folder %s", folder)
        return folder
