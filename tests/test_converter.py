import zipfile
from types import SimpleNamespace

import pytest

from file2md_backend.converter import (
    ConversionResult,
    ConvertOptions,
    ImageArtifact,
    MarkItDownConverter,
    extract_container_images,
    list_container_charts,
)


class _FakeMarkItDown:
    def __init__(self, markdown="# Converted"):
        self.markdown = markdown
        self.paths = []

    def convert(self, path):
        self.paths.append(path)
        return SimpleNamespace(markdown=self.markdown)


@pytest.fixture
def docx(tmp_path):
    path = tmp_path / "report.docx"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("word/document.xml", "<w:document/>")
        zf.writestr("word/media/image1.png", b"png-1")
        zf.writestr("word/media/image2.jpeg", b"jpeg-2")
        zf.writestr("word/media/notes.txt", b"not an image")
        zf.writestr("word/charts/chart1.xml", "<c:chart/>")
        zf.writestr("word/charts/_rels/chart1.xml.rels", "<Relationships/>")
    return path


def _options(tmp_path, **kwargs):
    image_dir = tmp_path / "sid-images"
    return ConvertOptions(image_dir=image_dir, output_dir=image_dir, **kwargs)


def test_markitdown_converter_extracts_images_and_charts(tmp_path, docx):
    fake = _FakeMarkItDown()
    result = MarkItDownConverter(markitdown=fake).convert(docx, _options(tmp_path))

    assert fake.paths == [str(docx)]
    assert sorted(img.name for img in result.images) == ["image1.png", "image2.jpeg"]
    for img in result.images:
        assert img.saved_path.startswith(str(tmp_path / "sid-images"))
    assert "![image1.png](images/image1.png)" in result.markdown
    assert result.markdown.startswith("# Converted")
    assert result.charts == ({"name": "chart1", "part": "word/charts/chart1.xml"},)
    assert result.metadata["format"] == "docx"
    assert isinstance(result.metadata["processingTime"], int)


def test_flags_disable_extraction(tmp_path, docx):
    options = _options(tmp_path, extract_images=False, extract_charts=False)
    result = MarkItDownConverter(markitdown=_FakeMarkItDown()).convert(docx, options)
    assert result.images == ()
    assert result.charts == ()
    assert result.markdown == "# Converted"
    assert not (tmp_path / "sid-images").exists()


def test_non_container_input_has_no_images(tmp_path):
    pdf = tmp_path / "plain.pdf"
    pdf.write_bytes(b"%PDF-1.4 plain")
    result = MarkItDownConverter(markitdown=_FakeMarkItDown("text")).convert(pdf, _options(tmp_path))
    assert result.images == ()
    assert result.metadata["sourceBytes"] == len(b"%PDF-1.4 plain")


def test_missing_input_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        MarkItDownConverter(markitdown=_FakeMarkItDown()).convert(tmp_path / "nope.pdf", _options(tmp_path))


def test_unsafe_media_entries_are_ignored(tmp_path):
    path = tmp_path / "evil.pptx"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("ppt/media/../../../escape.png", b"bad")
        zf.writestr("ppt/media/ok.png", b"good")
    images = extract_container_images(path, tmp_path / "out")
    assert [img.name for img in images] == ["ok.png"]
    assert not (tmp_path / "escape.png").exists()


def test_hwpx_bindata_is_extracted(tmp_path):
    path = tmp_path / "doc.hwpx"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("BinData/image1.bmp", b"bmp")
    images = extract_container_images(path, tmp_path / "out")
    assert [img.name for img in images] == ["image1.bmp"]
    assert list_container_charts(path) == []


def test_from_mapping_accepts_external_shape():
    result = ConversionResult.from_mapping(
        {
            "markdown": "# T",
            "images": [{"savedPath": "/tmp/x/images/a.png"}, "/tmp/x/b.png"],
            "charts": [{"type": "bar"}],
            "metadata": {"processingTime": 12},
        }
    )
    assert result.images == (
        ImageArtifact(saved_path="/tmp/x/images/a.png"),
        ImageArtifact(saved_path="/tmp/x/b.png"),
    )
    assert [img.name for img in result.images] == ["a.png", "b.png"]
    assert len(result.charts) == 1
    assert result.metadata == {"processingTime": 12}
