"""
Trivia categories offered to players, mapped to Open Trivia Database ids.
"""
from typing import Mapping


CATEGORIES: Mapping[str, int] = {
    'General Knowledge': 9,
    'Science & Nature': 17,
    'Computers': 18,
    'Mathematics': 19,
    'Sports': 21,
    'Geography': 22,
    'History': 23,
    'Animals': 27,
}


def resolve_category(name: str, categories: Mapping[str, int] = CATEGORIES) -> str:
    """
    Return the canonical category name for a user-supplied one.

    Raises:
        ValueError: If the name does not match any category
    """
    if isinstance(name, str):
        wanted = name.strip().lower()
        for category in categories:
            if category.lower() == wanted:
                return category
    raise ValueError(
        f"Unknown category {name!r}. Available categories: {', '.join(categories)}"
    )
