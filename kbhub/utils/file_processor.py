"""File processing utilities for extracting text from stored document versions."""
from pathlib import Path
from urllib.parse import urlparse, unquote
import pypdf
from docx import Document as DocxDocument

from kbhub.core.config import settings


PDF_MIME_TYPES = {'application/pdf'}
WORD_MIME_TYPES = {
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/docx',
    'application/msword',
}
TEXT_MIME_TYPES = {'text/plain', 'text/markdown', 'text/x-markdown', 'text/csv'}


class FileProcessor:
    """Extract text content from a stored file reference.

    Storage is an external collaborator: ``file_url`` is either a local path
    or a ``file://`` URL that it has already materialised under
    ``settings.UPLOAD_DIR``.
    """

    @staticmethod
    def extract_text(file_url: str, mime_type: str) -> str:
        """
        Extract text from a file.

        Args:
            file_url: Local path or file:// URL of the stored version
            mime_type: MIME type recorded when the version was uploaded

        Returns:
            Extracted text (may be empty)

        Raises:
            ValueError: If the MIME type is not supported or the file is unreadable
        """
        path = FileProcessor._resolve_path(file_url)

        if mime_type in PDF_MIME_TYPES:
            return FileProcessor._extract_from_pdf(path)
        if mime_type in WORD_MIME_TYPES:
            return FileProcessor._extract_from_docx(path)
        if mime_type in TEXT_MIME_TYPES or mime_type.startswith('text/'):
            return FileProcessor._extract_from_text(path)

        raise ValueError(f"Unsupported file format: {mime_type}")

    @staticmethod
    def is_supported(mime_type: str) -> bool:
        """Check if a MIME type is supported."""
        return (
            mime_type in PDF_MIME_TYPES
            or mime_type in WORD_MIME_TYPES
            or mime_type.startswith('text/')
        )

    @staticmethod
    def _resolve_path(file_url: str) -> Path:
        """Map ``file_url`` to a file under ``settings.UPLOAD_DIR``.

        Relative paths are taken relative to the upload directory. Anything
        that resolves outside it is rejected.
        """
        parsed = urlparse(file_url)
        if parsed.scheme == 'file':
            raw = Path(unquote(parsed.path))
        elif parsed.scheme in ('', None) or len(parsed.scheme) == 1:
            # plain path (a one-letter scheme is a Windows drive)
            raw = Path(file_url)
        else:
            raise ValueError(f"Unsupported file location: {parsed.scheme}")

        root = Path(settings.UPLOAD_DIR).resolve()
        path = (root / raw).resolve()
        if root not in path.parents:
            raise ValueError(f"File location is outside the upload directory: {file_url}")
        return path

    @staticmethod
    def _extract_from_pdf(path: Path) -> str:
        """Extract text from PDF file."""
        text_parts = []

        try:
            with open(path, 'rb') as file:
                pdf_reader = pypdf.PdfReader(file)

                for page_num, page in enumerate(pdf_reader.pages, 1):
                    page_text = page.extract_text() or ""
                    if page_text.strip():
                        text_parts.append(f"[Page {page_num}]\n{page_text}")
        except Exception as e:
            raise ValueError(f"Error extracting text from PDF: {str(e)}")

        return "\n\n".join(text_parts)

    @staticmethod
    def _extract_from_docx(path: Path) -> str:
        """Extract text from DOCX file."""
        try:
            doc = DocxDocument(str(path))
            paragraphs = [para.text for para in doc.paragraphs if para.text.strip()]
            return "\n\n".join(paragraphs)
        except Exception as e:
            raise ValueError(f"Error extracting text from DOCX: {str(e)}")

    @staticmethod
    def _extract_from_text(path: Path) -> str:
        """Extract text from plain text file."""
        try:
            with open(path, 'r', encoding='utf-8') as file:
                return file.read()
        except UnicodeDecodeError:
            # Try with different encoding
            with open(path, 'r', encoding='latin-1') as file:
                return file.read()
        except OSError as e:
            raise ValueError(f"Error reading text file: {str(e)}")
