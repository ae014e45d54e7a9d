"""
Shared fixtures: temporary work/output roots, a scripted converter and an app
factory whose background work runs synchronously.
"""
from __future__ import annotations

import os
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from file2md_backend.converter import ConversionResult, ImageArtifact
from file2md_backend.store import ArtifactStore, DiskOutputWriter
from file2md_backend.tasks import BackgroundRunner
from server import create_app


RETENTION_SECONDS = 3600


class FakeConverter:
    """Stands in for the document-conversion library.

    Writes the requested image files into options.image_dir, the way real
    converters do, then returns them with the scripted markdown.
    """

    def __init__(self, markdown="# Title", image_names=(), charts=(), metadata=None, error=None):
        self.markdown = markdown
        self.image_names = list(image_names)
        self.charts = list(charts)
        self.metadata = dict(metadata or {})
        self.error = error
        self.calls = []
        self.input_existed = []

    def convert(self, input_path, options):
        self.calls.append((Path(input_path), options))
        self.input_existed.append(Path(input_path).is_file())
        images = []
        for name in self.image_names:
            options.image_dir.mkdir(parents=True, exist_ok=True)
            path = options.image_dir / name
            path.write_bytes(image_bytes(name))
            images.append(ImageArtifact(saved_path=str(path)))
        if self.error is not None:
            raise self.error
        return ConversionResult(
            markdown=self.markdown,
            images=tuple(images),
            charts=tuple(self.charts),
            metadata=dict(self.metadata),
        )


def image_bytes(name: str) -> bytes:
    return b"\x89PNG\r\n\x1a\n" + name.encode() * 16


def age_path(path: Path, seconds: float) -> None:
    """Backdate a file or directory's mtime by `seconds`."""
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


@pytest.fixture
def work_root(tmp_path: Path) -> Path:
    root = tmp_path / "temp"
    root.mkdir()
    return root


@pytest.fixture
def output_root(tmp_path: Path) -> Path:
    root = tmp_path / "public" / "downloads"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def store(work_root: Path, output_root: Path) -> ArtifactStore:
    return ArtifactStore(work_root, output_root)


@pytest.fixture
def runner() -> BackgroundRunner:
    return BackgroundRunner(run_now=True)


@pytest.fixture
def make_client(work_root, output_root, runner):
    def _make(converter=None, writer=None, **kwargs):
        converter = converter or FakeConverter()
        app = create_app(
            work_root=work_root,
            output_root=output_root,
            converter=converter,
            writer=writer or DiskOutputWriter(output_root),
            runner=runner,
            retention_seconds=RETENTION_SECONDS,
            **kwargs,
        )
        return TestClient(app)

    return _make
