"""Plain-text extraction from uploaded policy PDFs."""
import pdfplumber
from flask import current_app


class PDFExtractionError(Exception):
    """Raised when text cannot be pulled out of a PDF."""


def extract_pdf_text(path: str) -> str:
    try:
        with pdfplumber.open(path) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        current_app.logger.warning("PDF text extraction failed", extra={"upload_path": path, "error": str(exc)})
        raise PDFExtractionError("Failed to extract text from PDF") from exc
    return "\n".join(p for p in pages if p).strip()
