"""Fingerprint-keyed compiled package cache.

Layout under the cache root, one directory per package fingerprint:

    <root>/<fingerprint>/compiled-XXXX/  compiled package contents
    <root>/<fingerprint>/manifest.json   marker naming the contents dir

The marker file is the only source of truth for "already compiled".
Contents are staged in a uniquely named directory that is complete
before the marker is published, and the marker is published with an
exclusive hard link, so it never changes once it exists. A reader never
sees a marker next to a partially written artifact, and a finished
artifact is never deleted by a concurrent writer.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

COMPILED_DIR_NAME = "compiled"
MARKER_NAME = "manifest.json"
MANIFEST_VERSION = "1.1"

FINGERPRINT_PATTERN = re.compile(r"[A-Za-z0-9_.+\-]+")

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


@dataclass
class ArtifactFile:
    """A file of a compiled package."""

    relative_path: str
    size_bytes: int
    sha256: str


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def describe_files(directory: Path) -> list[ArtifactFile]:
    """List the regular files below ``directory`` with size and checksum."""
    files: list[ArtifactFile] = []
    for path in sorted(directory.rglob("*")):
        if not path.is_file() or path.is_symlink():
            continue
        files.append(
            ArtifactFile(
                relative_path=path.relative_to(directory).as_posix(),
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
            )
        )
    return files


def generate_manifest(
    fingerprint: str,
    files: list[ArtifactFile],
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate the marker manifest of a compiled package.

    Args:
        fingerprint: Package fingerprint.
        files: Files of the compiled package.
        metadata: Optional extra metadata (package name, release, ...).

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "fingerprint": fingerprint,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "files": [asdict(f) for f in files],
        "summary": {
            "total_files": len(files),
            "total_size_bytes": sum(f.size_bytes for f in files),
        },
    }
    if metadata:
        manifest["metadata"] = metadata
    return manifest


def publish_manifest(manifest: dict[str, Any], output_path: Path) -> bool:
    """Write a manifest to ``output_path`` unless one is already there.

    The manifest is written to a temporary file in the same directory and
    hard-linked to ``output_path``, which fails if the target exists. The
    target therefore appears complete, and never changes once present.

    Returns:
        True if this call created the manifest, False if it already existed.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{output_path.name}.", dir=output_path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2, sort_keys=True)
        os.link(tmp_name, output_path)
    except FileExistsError:
        return False
    finally:
        Path(tmp_name).unlink(missing_ok=True)
    return True


class ArtifactCache:
    """Filesystem store of compiled packages keyed by fingerprint."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def package_dir(self, fingerprint: str) -> Path:
        """Return the entry directory of ``fingerprint``.

        Raises:
            ValueError: If the fingerprint is not a single safe path
                component below the cache root.
        """
        if (
            fingerprint in (".", "..")
            or not FINGERPRINT_PATTERN.fullmatch(fingerprint)
        ):
            raise ValueError(f"Invalid package fingerprint '{fingerprint}'")
        path = self.root / fingerprint
        if path.resolve().parent != self.root.resolve():
            raise ValueError(
                f"Package fingerprint '{fingerprint}' escapes cache root {self.root}"
            )
        return path

    def marker_path(self, fingerprint: str) -> Path:
        return self.package_dir(fingerprint) / MARKER_NAME

    def exists(self, fingerprint: str) -> bool:
        """Return True if the package has been compiled into the cache."""
        return self.marker_path(fingerprint).is_file()

    def read_manifest(self, fingerprint: str) -> dict[str, Any]:
        """Return the marker manifest of a compiled package.

        Raises:
            FileNotFoundError: If the package is not in the cache.
        """
        with self.marker_path(fingerprint).open(encoding="utf-8") as f:
            data: dict[str, Any] = json.load(f)
        return data

    def compiled_dir(self, fingerprint: str) -> Path:
        """Return the directory holding a package's compiled contents.

        Raises:
            FileNotFoundError: If the package is not in the cache.
        """
        name = self.read_manifest(fingerprint).get("compiled_dir", COMPILED_DIR_NAME)
        if name in (".", "..") or not FINGERPRINT_PATTERN.fullmatch(str(name)):
            raise ValueError(f"Corrupt marker for {fingerprint}: bad compiled_dir {name!r}")
        return self.package_dir(fingerprint) / name

    def materialize(self, fingerprint: str, destination: Path) -> Path:
        """Copy a compiled package into ``destination``.

        Raises:
            FileNotFoundError: If the package is not in the cache.
            OSError: If copying fails.
        """
        if not self.exists(fingerprint):
            raise FileNotFoundError(
                f"Compiled package {fingerprint} not found in {self.root}"
            )
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(
            self.compiled_dir(fingerprint),
            destination,
            symlinks=True,
            dirs_exist_ok=True,
        )
        return destination

    def persist(
        self,
        fingerprint: str,
        source_dir: Path,
        metadata: dict[str, Any] | None = None,
    ) -> Path:
        """Store the contents of ``source_dir`` as the compiled package.

        If another run stored the same fingerprint first, the existing
        artifact wins and this run's copy is discarded.

        Returns:
            The compiled directory in the cache.

        Raises:
            ValueError: If the fingerprint is not a safe path component.
            OSError: If copying or writing the marker fails.
        """
        package_dir = self.package_dir(fingerprint)
        package_dir.mkdir(parents=True, exist_ok=True)
        if self.exists(fingerprint):
            logger.info("Compiled package %s already present", fingerprint)
            return self.compiled_dir(fingerprint)

        staging = Path(
            tempfile.mkdtemp(prefix=f"{COMPILED_DIR_NAME}-", dir=package_dir)
        )
        published = False
        try:
            shutil.copytree(source_dir, staging, symlinks=True, dirs_exist_ok=True)
            files = describe_files(staging)
            manifest = generate_manifest(fingerprint, files, metadata)
            manifest["compiled_dir"] = staging.name
            published = publish_manifest(manifest, self.marker_path(fingerprint))
        finally:
            if not published:
                shutil.rmtree(staging, ignore_errors=True)

        if not published:
            logger.info(
                "Compiled package %s appeared while persisting, keeping existing",
                fingerprint,
            )
            return self.compiled_dir(fingerprint)

        logger.debug("Persisted %s (%d files)", fingerprint, len(files))
        return staging

    def list_entries(self) -> list[str]:
        """Return the names of all package entries, complete or not."""
        if not self.root.is_dir():
            return []
        return sorted(
            p.name
            for p in self.root.iterdir()
            if p.is_dir()
            and not p.name.startswith(".")
            and FINGERPRINT_PATTERN.fullmatch(p.name)
        )

    def list_fingerprints(self) -> list[str]:
        """Return the fingerprints of all complete compiled packages."""
        return [fp for fp in self.list_entries() if self.exists(fp)]

    def remove(self, fingerprint: str) -> None:
        """Delete a package entry from the cache."""
        shutil.rmtree(self.package_dir(fingerprint))


__all__ = [
    "COMPILED_DIR_NAME",
    "FINGERPRINT_PATTERN",
    "HASH_CHUNK_SIZE",
    "MARKER_NAME",
    "ArtifactCache",
    "ArtifactFile",
    "compute_file_hash",
    "describe_files",
    "generate_manifest",
    "publish_manifest",
]
