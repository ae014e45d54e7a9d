import io
import zipfile

import pytest

from file2md_backend.archive import pack_archive
from file2md_backend.converter import ImageArtifact
from file2md_backend.errors import PackagingError


def _images(directory, names):
    directory.mkdir(parents=True, exist_ok=True)
    out = []
    for name in names:
        path = directory / name
        path.write_bytes(f"bytes of {name}".encode() * 100)
        out.append(ImageArtifact(saved_path=str(path)))
    return out


def test_pack_and_unpack_yields_identical_entries(tmp_path):
    image_dir = tmp_path / "sid-images"
    images = _images(image_dir, ["a.png", "b.jpg", "c.gif"])
    buf = io.BytesIO()

    result = pack_archive(buf, "# Report\n\n![a](images/a.png)", "report", images, image_dir=image_dir)

    with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
        names = sorted(zf.namelist())
        assert names == ["images/a.png", "images/b.jpg", "images/c.gif", "report.md"]
        assert zf.read("report.md").decode("utf-8") == "# Report\n\n![a](images/a.png)"
        for image in images:
            with open(image.saved_path, "rb") as fh:
                assert zf.read(f"images/{image.name}") == fh.read()
    assert len(result.entries) == 4
    assert result.skipped == []
    assert result.outside_image_dir == []


def test_image_outside_image_dir_is_still_packed(tmp_path):
    image_dir = tmp_path / "sid-images"
    image_dir.mkdir()
    stray = _images(tmp_path / "elsewhere", ["stray.png"])
    buf = io.BytesIO()

    result = pack_archive(buf, "md", "doc", stray, image_dir=image_dir)

    assert result.outside_image_dir == ["stray.png"]
    with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
        assert "images/stray.png" in zf.namelist()


def test_missing_image_is_skipped(tmp_path):
    images = _images(tmp_path, ["a.png"]) + [ImageArtifact(saved_path=str(tmp_path / "gone.png"))]
    buf = io.BytesIO()

    result = pack_archive(buf, "md", "doc", images, image_dir=tmp_path)

    assert result.skipped == ["gone.png"]
    with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
        assert sorted(zf.namelist()) == ["doc.md", "images/a.png"]
        assert zf.testzip() is None


def test_duplicate_basenames_get_suffixed(tmp_path):
    first = _images(tmp_path / "one", ["img.png"])
    second = _images(tmp_path / "two", ["img.png"])
    buf = io.BytesIO()

    pack_archive(buf, "md", "doc", first + second)

    with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
        assert sorted(zf.namelist()) == ["doc.md", "images/img.png", "images/img_2.png"]


class _BrokenSink(io.RawIOBase):
    def writable(self):
        return True

    def write(self, data):
        raise OSError("No space left on device")


def test_sink_failure_raises_packaging_error(tmp_path):
    images = _images(tmp_path, ["a.png"])
    with pytest.raises(PackagingError):
        pack_archive(_BrokenSink(), "md", "doc", images)
