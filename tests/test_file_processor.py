import pytest
from docx import Document as DocxDocument

from kbhub.utils.file_processor import FileProcessor

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class TestExtractText:
    def test_plain_text(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# Refunds\n\nWithin 30 days.", encoding="utf-8")

        assert FileProcessor.extract_text(str(path), "text/markdown") == "# Refunds\n\nWithin 30 days."

    def test_file_url(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello", encoding="utf-8")

        assert FileProcessor.extract_text(path.as_uri(), "text/plain") == "hello"

    def test_docx(self, tmp_path):
        path = tmp_path / "policy.docx"
        doc = DocxDocument()
        doc.add_paragraph("First paragraph")
        doc.add_paragraph("")
        doc.add_paragraph("Second paragraph")
        doc.save(str(path))

        assert FileProcessor.extract_text(str(path), DOCX_MIME) == "First paragraph\n\nSecond paragraph"

    def test_unsupported_mime_type(self, tmp_path):
        with pytest.raises(ValueError):
            FileProcessor.extract_text(str(tmp_path / "x.bin"), "application/octet-stream")

    def test_remote_url_is_rejected(self):
        with pytest.raises(ValueError):
            FileProcessor.extract_text("https://example.com/a.txt", "text/plain")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            FileProcessor.extract_text(str(tmp_path / "missing.txt"), "text/plain")

    def test_relative_path_is_under_upload_dir(self, upload_dir):
        (upload_dir / "tenant1").mkdir()
        (upload_dir / "tenant1" / "faq.txt").write_text("faq", encoding="utf-8")

        assert FileProcessor.extract_text("tenant1/faq.txt", "text/plain") == "faq"

    @pytest.mark.parametrize("file_url", [
        "/etc/passwd",
        "file:///etc/passwd",
        "../../../../etc/passwd",
    ])
    def test_outside_upload_dir_is_rejected(self, file_url):
        with pytest.raises(ValueError, match="outside the upload directory"):
            FileProcessor.extract_text(file_url, "text/plain")

    def test_sibling_directory_with_same_prefix(self, upload_dir):
        sibling = upload_dir.parent / (upload_dir.name + "-other")
        sibling.mkdir(exist_ok=True)
        (sibling / "a.txt").write_text("secret", encoding="utf-8")

        with pytest.raises(ValueError):
            FileProcessor.extract_text(str(sibling / "a.txt"), "text/plain")


class TestIsSupported:
    @pytest.mark.parametrize("mime_type", ["application/pdf", "text/plain", "text/markdown", DOCX_MIME])
    def test_supported(self, mime_type):
        assert FileProcessor.is_supported(mime_type)

    def test_unsupported(self):
        assert not FileProcessor.is_supported("image/png")
