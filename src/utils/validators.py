"""Lightweight validation helpers shared by request models and services."""

import re

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: str) -> str:
    """Trim and lowercase the domain part; raise ValueError when malformed."""
    cleaned = (value or "").strip()
    if not _EMAIL_RE.match(cleaned):
        raise ValueError("email is not a valid address")
    local, domain = cleaned.rsplit("@", 1)
    return f"{local}@{domain.lower()}"


def page_type_for_path(path: str) -> str:
    """Classify a storefront URL path the way popup targeting rules expect."""
    if path in ("", "/"):
        return "home"
    if "/products/" in path:
        return "product"
    if "/collections/" in path:
        return "collection"
    if "/cart" in path:
        return "cart"
    if "/search" in path:
        return "search"
    if "/pages/" in path:
        return "page"
    if "/blogs/" in path:
        return "blog"
    return "other"
