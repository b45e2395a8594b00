"""
Meaningful-ID generator for use cases.

Format: UC-{CAT}-{SEQ}
  - CAT is the first three letters of the first process (GEN when none)
  - SEQ is 3-digit and category-scoped

Example: UC-CLA-001 (Claims Management), UC-GEN-014
"""

import re

from portfolio.models import db
from portfolio.models.use_case import UseCase

PREFIX = "UC"
GENERAL_CATEGORY = "GEN"


def category_code(processes: list | None) -> str:
    first = next((p for p in processes or [] if p), "")
    letters = re.sub(r"[^A-Za-z]", "", first).upper()
    return letters[:3] if len(letters) >= 3 else GENERAL_CATEGORY


def generate_meaningful_id(processes: list | None) -> str:
    """Next free id for the category: one past the highest existing suffix."""
    cat = category_code(processes)
    stem = f"{PREFIX}-{cat}-"
    existing = (
        db.session.query(UseCase.meaningful_id)
        .filter(UseCase.meaningful_id.like(f"{stem}%"))
        .all()
    )
    highest = 0
    for (code,) in existing:
        suffix = code[len(stem):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{stem}{highest + 1:03d}"
