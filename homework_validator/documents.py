"""Text extraction for submitted assignments (PDF or plain text)."""
import os
from typing import Optional

import fitz  # PyMuPDF

from homework_validator.interview.errors import ValidationError

PLAIN_TEXT_EXTENSIONS = {".txt", ".md"}


def extract_text_from_pdf(data: bytes) -> str:
    text_parts = []
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            for page in doc:
                text_parts.append(page.get_text())
    except RuntimeError as e:
        # fitz.FileDataError and friends derive from RuntimeError
        raise ValidationError("The PDF could not be read.") from e
    return "\n".join(text_parts)


def extract_text(data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
    """Return the usable text of an uploaded document.

    Raises ValidationError when the file type is unsupported or no text survives
    extraction (e.g. a scanned PDF without a text layer).
    """
    if not data:
        raise ValidationError("The uploaded file is empty.")
    ext = os.path.splitext(filename or "")[1].lower()
    if ext == ".pdf" or content_type == "application/pdf" or data[:5] == b"%PDF-":
        text = extract_text_from_pdf(data)
    elif ext in PLAIN_TEXT_EXTENSIONS or (content_type or "").startswith("text/"):
        text = data.decode("utf-8", errors="replace")
    else:
        raise ValidationError(f"Unsupported file type: {ext or content_type or 'unknown'}")
    text = text.strip()
    if not text:
        raise ValidationError("No text could be extracted from the document.")
    return text
