"""Document text extraction for uploaded files."""
import logging
import os
import fitz  # PyMuPDF

from errors import IngestFailed

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".md"}


class DocumentLoader:
    """Extracts plain text from uploaded PDF or text files."""

    def extract(self, data: bytes, filename: str) -> str:
        """
        Extract text from an uploaded file.

        Args:
            data: Raw file bytes
            filename: Original file name, used to pick the extractor

        Returns:
            Extracted text (pages joined by newlines)

        Raises:
            IngestFailed: If the file is empty, unsupported, unreadable, or
                contains no text
        """
        if not data:
            raise IngestFailed(f"Uploaded file {filename} is empty", {"document": filename})

        extension = os.path.splitext(filename or "")[1].lower()
        if extension == ".pdf":
            text = self._load_pdf(data, filename)
        elif extension in TEXT_EXTENSIONS:
            text = self._load_text(data, filename)
        else:
            raise IngestFailed(
                f"Unsupported file type: {extension or 'unknown'}",
                {"document": filename, "supported": [".pdf"] + sorted(TEXT_EXTENSIONS)}
            )

        if not text.strip():
            raise IngestFailed(f"No extractable text in {filename}", {"document": filename})

        return text

    def _load_pdf(self, data: bytes, filename: str) -> str:
        """
        Extract text page-by-page from PDF bytes.
        """
        try:
            pdf_document = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            logger.error(f"Failed to open PDF {filename}: {str(e)}")
            raise IngestFailed(f"Could not read PDF {filename}", {"document": filename}) from e

        try:
            pages = [page.get_text() for page in pdf_document]
        finally:
            pdf_document.close()

        logger.info(f"Loaded {filename}: {len(pages)} pages")
        return "\n".join(pages)

    def _load_text(self, data: bytes, filename: str) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IngestFailed(f"{filename} is not valid UTF-8 text", {"document": filename}) from e
