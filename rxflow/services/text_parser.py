from __future__ import annotations

import re
import unicodedata
from typing import Any

# ----------------------------
# Free-text normalization
# ----------------------------

UNIT_TOKENS = {"mg", "mcg", "ml", "g", "%"}

_WS_RE = re.compile(r"\s+")

_TITLE_RE = re.compile(r"\b(?:doutora?|dra?)\b\.?", re.IGNORECASE)

# CRM 12345 | CRM/SP 123456 | CRN-3 5678 | CRO: 1234-SP
_REGISTRY_RE = re.compile(
    r"""\b(?:crm|crn|cro|cremesp|coren|crefito)\b
        (?:\s*[-/]?\s*[a-z]{2}\b|\s*-\s*\d{1,2}\b)?
        (?:\s*[:nº°.\-/]*\s*\d[\d.\-/]*(?:\s*[-/]\s*[a-z]{2}\b)?)?
    """,
    re.IGNORECASE | re.VERBOSE,
)

_BRACKETS_RE = re.compile(r"[()\[\]#]")
_EDGE_SEPARATORS_RE = re.compile(r"^[\s\-–—|,:;/]+|[\s\-–—|,:;/]+$")


def _collapse(s: str) -> str:
    return _WS_RE.sub(" ", s or "").strip()


def normalize_text(text: str | None) -> str:
    """
    Canonical casing for model-extracted text.

    - ALL CAPS input becomes sentence case ("DILTIAZEM 60 MG" -> "Diltiazem 60 mg")
    - anything else is title-cased word by word, keeping unit tokens lowercase
    """
    s = _collapse(text or "")
    if not s:
        return ""

    if s == s.upper():
        s = s.lower()
        return s[:1].upper() + s[1:]

    words = []
    for w in s.split(" "):
        if w.lower() in UNIT_TOKENS:
            words.append(w.lower())
        else:
            words.append(w.capitalize())
    return " ".join(words)


def strip_professional_title(name: str | None) -> str | None:
    """Drop Dr/Dra prefixes and council registration tokens from a prescriber name."""
    if not name or not name.strip():
        return None

    s = _TITLE_RE.sub(" ", name)
    s = _REGISTRY_RE.sub(" ", s)
    s = _BRACKETS_RE.sub(" ", s)
    s = _collapse(s)
    s = _EDGE_SEPARATORS_RE.sub("", s)
    s = _collapse(s)
    return s or None


_NUMBER_RE = re.compile(r"[-+]?\d+(?:[.,]\d+)?")


def parse_dose(value: Any) -> float | None:
    """Numeric dose or None. Accepts "1,5", "60mg", 60."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    m = _NUMBER_RE.search(str(value))
    if not m:
        return None
    try:
        return float(m.group(0).replace(",", "."))
    except ValueError:
        return None


def parse_quantity(value: Any) -> int | None:
    dose = parse_dose(value)
    if dose is None:
        return None
    return int(round(dose))


# ----------------------------
# Posology -> quantity heuristic
# ----------------------------

_WORD_NUMBERS = {"um": 1, "uma": 1, "dois": 2, "duas": 2, "tres": 3, "quatro": 4}
_NUM = r"(\d+|uma|um|duas|dois|tres|quatro)"

_PER_TAKE_RE = re.compile(
    r"\b" + _NUM + r"\s*(?:capsulas?|caps?|comprimidos?|cp|doses?|saches?|unidades?|gotas?)\b"
)
_TIMES_PER_DAY_RE = re.compile(r"\b" + _NUM + r"\s*(?:x|vez(?:es)?)\s*(?:ao|por|/|a)\s*dia\b")
_EVERY_N_HOURS_RE = re.compile(r"cada\s+(\d+)\s*(?:h|hs|hrs?|horas?)\b")
_ONCE_A_DAY_RE = re.compile(
    r"\b(?:diariamente|ao dia|por dia|a noite|pela manha|ao deitar|em jejum|ao acordar)\b"
)
_DURATION_RE = re.compile(r"(\d+)\s*(dias?|semanas?|mes(?:es)?)\b")
_CONTINUOUS_RE = re.compile(r"\buso\s+continuo\b")

CONTINUOUS_USE_DAYS = 30


def _ascii_lower(s: str) -> str:
    s = unicodedata.normalize("NFD", s or "")
    s = "".join(ch for ch in s if unicodedata.category(ch) != "Mn")
    return _collapse(s.lower())


def _to_int(token: str) -> int:
    return _WORD_NUMBERS.get(token) or int(token)


def _frequency_per_day(s: str) -> int | None:
    m = _TIMES_PER_DAY_RE.search(s)
    if m:
        return _to_int(m.group(1))

    m = _EVERY_N_HOURS_RE.search(s)
    if m:
        hours = int(m.group(1))
        if hours <= 0:
            return None
        return max(1, round(24 / hours))

    if _ONCE_A_DAY_RE.search(s):
        return 1
    return None


def _duration_days(s: str) -> int | None:
    m = _DURATION_RE.search(s)
    if m:
        n = int(m.group(1))
        unit = m.group(2)
        if unit.startswith("semana"):
            return n * 7
        if unit.startswith("mes"):
            return n * 30
        return n

    if _CONTINUOUS_RE.search(s):
        return CONTINUOUS_USE_DAYS
    return None


def estimate_quantity(posology: str | None) -> int | None:
    """
    Units to dispense = units per take x takes per day x days.

    "Tomar 1 cápsula 2x ao dia por 30 dias" -> 60.
    Returns None when frequency or duration cannot be read from the text.
    """
    s = _ascii_lower(posology or "")
    if not s:
        return None

    freq = _frequency_per_day(s)
    days = _duration_days(s)
    if not freq or not days:
        return None

    m = _PER_TAKE_RE.search(s)
    per_take = _to_int(m.group(1)) if m else 1

    return per_take * freq * days
