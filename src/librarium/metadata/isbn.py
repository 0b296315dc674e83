# ABOUTME: ISBN detection and classification for identifiers pulled from book files.
# ABOUTME: Recognizes ISBN-10 and ISBN-13 in free text and sorts them into the right field.

import re

_ISBN_RE = re.compile(r"(?:isbn[:\s]?)?(97[89]\d{10}|\d{9}[\dXx])", re.IGNORECASE)


def clean_isbn(value: str) -> str:
    return re.sub(r"[\s-]", "", value).upper()


def find_isbn(text: str | None) -> str | None:
    """Find the first ISBN-looking token in an identifier string."""
    if not text:
        return None
    match = _ISBN_RE.search(clean_isbn(text))
    return match.group(1) if match else None


def classify_isbn(isbn: str | None) -> dict[str, str]:
    """Map an ISBN onto the isbn / isbn10 / isbn13 metadata fields."""
    found = find_isbn(isbn)
    if not found:
        return {}
    fields = {"isbn": found}
    if len(found) == 13:
        fields["isbn13"] = found
    else:
        fields["isbn10"] = found
    return fields
