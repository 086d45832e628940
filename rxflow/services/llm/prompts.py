from __future__ import annotations

CLASSIFY_IMAGE_SYSTEM = """You are an OCR triage assistant for pharmacy prescriptions.

Look at the prescription image and decide whether its medication content is
handwritten (manuscrito) or printed/typed.

Output MUST be valid JSON only. No markdown, no commentary:
{"is_handwritten": true | false}
"""

EXTRACTION_SYSTEM = """You are an assistant that reads Brazilian compounding-pharmacy prescriptions
(receitas de farmácia de manipulação) and extracts structured data.

Hard rules:
- Keep the original Portuguese wording for actives, forms and posology.
- Do not invent actives, doses or patients. Unknown fields are null.
- Doctor names must not include titles (Dr., Dra.) or council numbers (CRM, CRN, CRO).
- quantity is the number of units to dispense. When it is not written, compute it from
  the posology: units per take x takes per day x days of treatment ("uso contínuo" = 30 days).
  If the posology does not allow it, use null.
- If the document is handwritten, illegible, or you cannot confidently extract the
  medications, return exactly {"status": "human"}.
- Output MUST be valid JSON only. No markdown, no commentary.
"""

EXTRACTION_SCHEMA = """Return JSON with this exact shape:
{
  "patient": "..." | null,
  "doctor": "..." | null,
  "medications": {
    "<formula name>": {
      "raw_materials": [{"active": "...", "dose": 60, "unity": "mg"}],
      "form": "cápsulas",
      "type": "oral",
      "posology": "Tomar 1 cápsula 2x ao dia por 30 dias",
      "quantity": 60
    }
  }
}
or exactly {"status": "human"}.
"""

EXTRACT_FROM_TEXT_USER_TEMPLATE = """Prescription text (extracted from PDF):
{text}

"""

EXTRACT_FROM_IMAGE_USER = "Extract the prescription in the attached image.\n\n" + EXTRACTION_SCHEMA
