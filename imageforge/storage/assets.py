"""Project asset store: deduplicated references, generated outputs, sidecars.

Layout under the project folder:
    references/<sha256>.png        deduplicated reference inputs
    generations/<base>[-<n>].png   generated outputs
    generations/<base>.meta        one provenance sidecar per batch
    .thumbnails/<base>[-<n>].png   output thumbnails

Every file is written through a temp file and an atomic rename, so a crash
never leaves a half-written asset behind.
"""

import hashlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from imageforge.storage.imaging import make_thumbnail, normalize_png

logger = logging.getLogger(__name__)

GENERATIONS_DIR = "generations"
THUMBNAILS_DIR = ".thumbnails"
REFERENCES_DIR = "references"
SIDECAR_SUFFIX = ".meta"

# <yyyymmdd-hhmmss>[_<k>][-<n>]
_OUTPUT_NAME = re.compile(r"^(?P<base>\d{8}-\d{6}(?:_\d+)?)(?:-(?P<index>\d+))?$")


def atomic_write(path: Path, data: bytes) -> None:
    """Write bytes to path via a sibling temp file and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def base_name_of(file_name: str) -> str:
    """Batch base name shared by an output and its provenance sidecar."""
    stem = Path(file_name).stem
    match = _OUTPUT_NAME.match(stem)
    return match.group("base") if match else stem


class Provenance(BaseModel):
    """Sidecar contents describing how a batch of outputs was produced."""
    prompt: str
    model_id: str
    aspect_ratio: str
    image_count: int
    options: Dict[str, Any] = Field(default_factory=dict)
    reference_hashes: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class StoredReference:
    path: str
    sha256: str


@dataclass
class StoredOutputs:
    base_name: str
    output_paths: List[str] = field(default_factory=list)
    thumbnail_paths: List[str] = field(default_factory=list)


class AssetStore:
    """Manages the asset files of one project folder."""

    def __init__(self, root: Path, thumbnail_max_size: int = 256):
        self.root = Path(root)
        self.thumbnail_max_size = thumbnail_max_size
        self._meta_cache: Dict[str, Provenance] = {}

    @property
    def generations_dir(self) -> Path:
        return self.root / GENERATIONS_DIR

    @property
    def thumbnails_dir(self) -> Path:
        return self.root / THUMBNAILS_DIR

    @property
    def references_dir(self) -> Path:
        return self.root / REFERENCES_DIR

    def resolve(self, relative_path: str) -> Path:
        return self.root / relative_path

    def _write(self, path: Path, data: bytes) -> None:
        atomic_write(path, data)

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def store_reference(self, data: bytes) -> StoredReference:
        """Store reference bytes under their content hash; no-op if present."""
        digest = hashlib.sha256(data).hexdigest()
        relative = f"{REFERENCES_DIR}/{digest}.png"
        path = self.resolve(relative)
        if not path.exists():
            self._write(path, data)
            logger.info("Stored reference %s (%d bytes)", digest[:12], len(data))
        return StoredReference(path=relative, sha256=digest)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def store_outputs(self, images: List[bytes], provenance: Provenance) -> StoredOutputs:
        """Persist one batch of generated images with thumbnails and a sidecar."""
        base = self._allocate_base_name()
        stored = StoredOutputs(base_name=base)

        # Sidecar first: an interrupted batch leaves at most a sidecar for
        # reclaim_orphans, never outputs without provenance.
        sidecar = self.generations_dir / f"{base}{SIDECAR_SUFFIX}"
        self._write(sidecar, provenance.model_dump_json(indent=2).encode("utf-8"))
        self._meta_cache[base] = provenance

        try:
            for index, data in enumerate(images):
                self._store_output(stored, index, len(images), data)
        except BaseException:
            self._discard_partial(stored, sidecar)
            raise

        logger.info("Saved %d image(s) as %s", len(stored.output_paths), base)
        return stored

    def _store_output(self, stored: StoredOutputs, index: int, total: int, data: bytes) -> None:
        suffix = f"-{index + 1}" if total > 1 else ""
        filename = f"{stored.base_name}{suffix}.png"

        try:
            data = normalize_png(data)
        except OSError as exc:
            logger.warning("Could not decode output %s, saving as received: %s", filename, exc)

        image_path = f"{GENERATIONS_DIR}/{filename}"
        self._write(self.resolve(image_path), data)
        stored.output_paths.append(image_path)

        thumb_path = f"{THUMBNAILS_DIR}/{filename}"
        try:
            thumbnail = make_thumbnail(data, self.thumbnail_max_size)
        except (OSError, ValueError) as exc:
            logger.warning("Thumbnail for %s skipped: %s", filename, exc)
            return
        self._write(self.resolve(thumb_path), thumbnail)
        stored.thumbnail_paths.append(thumb_path)

    def _discard_partial(self, stored: StoredOutputs, sidecar: Path) -> None:
        logger.warning("Saving batch %s failed; removing %d partial file(s)",
                       stored.base_name, len(stored.output_paths) + len(stored.thumbnail_paths))
        for relative in stored.output_paths + stored.thumbnail_paths:
            self.resolve(relative).unlink(missing_ok=True)
        sidecar.unlink(missing_ok=True)
        self._meta_cache.pop(stored.base_name, None)

    def _allocate_base_name(self) -> str:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        candidate = stamp
        counter = 1
        while self._base_taken(candidate):
            counter += 1
            candidate = f"{stamp}_{counter}"
        return candidate

    def _base_taken(self, base: str) -> bool:
        if (self.generations_dir / f"{base}{SIDECAR_SUFFIX}").exists():
            return True
        return bool(self._siblings(base))

    def _siblings(self, base: str) -> List[Path]:
        if not self.generations_dir.is_dir():
            return []
        return [
            p for p in self.generations_dir.iterdir()
            if p.suffix == ".png" and base_name_of(p.name) == base
        ]

    def delete_outputs(self, file_names: List[str]) -> List[str]:
        """Delete outputs and their thumbnails, reclaiming orphaned sidecars.

        Returns the base names whose sidecar was removed.
        """
        touched = []
        for name in file_names:
            filename = Path(name).name
            (self.generations_dir / filename).unlink(missing_ok=True)
            (self.thumbnails_dir / filename).unlink(missing_ok=True)
            base = base_name_of(filename)
            if base not in touched:
                touched.append(base)

        reclaimed = [base for base in touched if self._reclaim_sidecar(base)]
        return reclaimed

    def _reclaim_sidecar(self, base: str) -> bool:
        if self._siblings(base):
            return False
        self._meta_cache.pop(base, None)
        sidecar = self.generations_dir / f"{base}{SIDECAR_SUFFIX}"
        if not sidecar.exists():
            return False
        sidecar.unlink()
        logger.info("Removed orphaned sidecar %s", sidecar.name)
        return True

    def reclaim_orphans(self) -> List[str]:
        """Remove every sidecar left without outputs (e.g. after a crash)."""
        if not self.generations_dir.is_dir():
            return []
        bases = [p.stem for p in self.generations_dir.glob(f"*{SIDECAR_SUFFIX}")]
        return [base for base in bases if self._reclaim_sidecar(base)]

    def load_provenance(self, file_name: str) -> Optional[Provenance]:
        """Provenance of the batch an output belongs to, cached after first read."""
        base = base_name_of(Path(file_name).name)
        if base in self._meta_cache:
            return self._meta_cache[base]
        sidecar = self.generations_dir / f"{base}{SIDECAR_SUFFIX}"
        if not sidecar.exists():
            return None
        provenance = Provenance.model_validate_json(sidecar.read_bytes())
        self._meta_cache[base] = provenance
        return provenance


def project_size(path: Path) -> int:
    """Total bytes under path, skipping hidden files and folders."""
    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        for name in filenames:
            if name.startswith("."):
                continue
            try:
                total += os.path.getsize(os.path.join(dirpath, name))
            except OSError:
                continue
    return total


def format_size(num_bytes: int) -> str:
    mb = num_bytes / (1024 * 1024)
    if mb >= 1000:
        return f"{mb / 1024:.1f} GB"
    return f"{mb:.1f} MB"
