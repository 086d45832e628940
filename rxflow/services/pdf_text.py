from __future__ import annotations

import logging
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from rxflow.core.errors import PermanentJobFailure

logger = logging.getLogger(__name__)


def extract_pdf_text(path: str | Path) -> str:
    """
    Text layer of a PDF, pages joined by blank lines.

    Scanned PDFs without a text layer come back as "" (the caller decides
    what "too little text" means). A file pypdf cannot open at all is a
    permanent failure.
    """
    try:
        reader = PdfReader(str(path))
        pages: list[str] = []
        for page in reader.pages:
            page_text = (page.extract_text() or "").strip()
            if page_text:
                pages.append(page_text)
    except (PdfReadError, ValueError) as e:
        raise PermanentJobFailure(f"corrupt pdf: {e}") from e

    text = "\n\n".join(pages).strip()
    logger.debug("pdf text extracted: path=%s pages=%d chars=%d", path, len(pages), len(text))
    return text
