import re
import unicodedata
from typing import Optional, Sequence

from rapidfuzz.distance import Levenshtein

from models import Category

KEYWORD_TABLE: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Transporte", ("uber", "99", "posto", "gasolina")),
    ("Alimentação", ("ifood", "mercado", "padaria", "restaurante")),
    ("Lazer", ("netflix", "spotify", "cinema")),
    ("Saúde", ("farmacia", "medico", "exame")),
)


def fold(text: str) -> str:
    """Lowercase and strip accents so "Médico" matches "medico"."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower().strip()


def _matches(keyword: str, text: str) -> bool:
    # Numeric keywords ("99") must stand alone so amounts do not match.
    if keyword.isdigit():
        return re.search(rf"(?<!\d){re.escape(keyword)}(?!\d)", text) is not None
    return keyword in text


def find_category(name: str, categories: Sequence[Category]) -> Optional[Category]:
    target = fold(name)
    best: Optional[Category] = None
    best_distance: Optional[int] = None
    for category in categories:
        candidate = fold(category.name)
        if candidate == target:
            return category
        dist = int(Levenshtein.distance(target, candidate))
        if best_distance is None or dist < best_distance:
            best, best_distance = category, dist
    if best_distance is not None and best_distance <= 1:
        return best
    return None


def suggest_category(description: str, categories: Sequence[Category]) -> Optional[str]:
    """Category id for a free-text description.

    Unmatched text falls back to the first category in ``categories``. A
    keyword hit whose category the owner does not have yields ``None``, as
    does an empty list.
    """
    if not categories:
        return None
    text = fold(description)
    for category_name, keywords in KEYWORD_TABLE:
        if any(_matches(keyword, text) for keyword in keywords):
            match = find_category(category_name, categories)
            return match.id if match is not None else None
    return categories[0].id
