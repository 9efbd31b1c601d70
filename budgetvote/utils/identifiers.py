import re
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from budgetvote.models.session import VotingSession

DEFAULT_SESSION_STEM = "session"
SESSION_STEM_MAX_LENGTH = 48

_TRANSLITERATIONS = {
    "å": "a",
    "ä": "a",
    "ö": "o",
    "é": "e",
    "ü": "u",
}
_YEAR_PATTERN = re.compile(r"\b(19|20)\d{2}\b")


def slugify(value: Optional[str]) -> str:
    """Lowercase ASCII slug with single dashes, Swedish vowels folded."""
    if not value:
        return ""
    lowered = value.strip().lower()
    folded = "".join(_TRANSLITERATIONS.get(char, char) for char in lowered)
    cleaned = re.sub(r"[^a-z0-9]+", "-", folded)
    return cleaned.strip("-")


def extract_year(name: Optional[str], fallback: Optional[datetime] = None) -> str:
    if name:
        match = _YEAR_PATTERN.search(name)
        if match:
            return match.group(0)
    moment = fallback or datetime.now(timezone.utc)
    return str(moment.year)


def build_session_stem(
    name: Optional[str],
    municipality: Optional[str],
    created_at: Optional[datetime] = None,
) -> str:
    """
    Produce the readable part of a session id, e.g. 'vallentuna-2025'.
    The municipality wins over the session name when both are present.
    """
    base = slugify(municipality)
    if not base:
        without_year = _YEAR_PATTERN.sub("", name or "")
        base = slugify(without_year)
    base = (base or DEFAULT_SESSION_STEM)[:SESSION_STEM_MAX_LENGTH].strip("-")
    return f"{base}-{extract_year(name, created_at)}"


def generate_session_id(
    db: Session,
    name: Optional[str],
    municipality: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> str:
    """
    Return a unique session id. Collisions get a numeric suffix:
    'vallentuna-2025', 'vallentuna-2025-1', 'vallentuna-2025-2', ...
    """
    stem = build_session_stem(name, municipality, created_at)
    taken = {
        row[0]
        for row in db.query(VotingSession.session_id)
        .filter(
            (VotingSession.session_id == stem)
            | VotingSession.session_id.like(f"{stem}-%")
        )
        .all()
    }
    if stem not in taken:
        return stem
    sequence = 1
    while f"{stem}-{sequence}" in taken:
        sequence += 1
    return f"{stem}-{sequence}"
