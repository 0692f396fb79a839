"""
Pre-mutation transforms applied by the write path.

Each transform takes the dict of pending field changes and returns a new
dict; none of them touch an ORM instance.  A transform only acts when the
field it derives from is present in the changes, which is what keeps an
unchanged password from being hashed twice and an unchanged name from
being re-slugged::

    changes = prepare(
        {"username": "alice", "email": "Alice@Example.com", "password": "Passw0rd"},
        normalize_email,
        hash_password_change(hasher),
    )
    apply_changes(user, changes)
"""
import re
from typing import Any, Callable

from blog_api.security import PasswordHasher

Changes = dict[str, Any]
Transform = Callable[[Changes], Changes]

_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase slug derived from *text*."""
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    return _SLUG_DASH_RE.sub("-", text).strip("-")


def normalize_email(changes: Changes) -> Changes:
    if changes.get("email") is None:
        return changes
    return {**changes, "email": changes["email"].strip().lower()}


def hash_password_change(hasher: PasswordHasher) -> Transform:
    """Replace a plaintext ``password`` entry with its ``password_hash``."""

    def _transform(changes: Changes) -> Changes:
        if "password" not in changes:
            return changes
        prepared = dict(changes)
        plaintext = prepared.pop("password")
        if plaintext is not None:
            prepared["password_hash"] = hasher.hash_password(plaintext)
        return prepared

    return _transform


def derive_slug(source: str, target: str = "slug") -> Transform:
    """Add ``target`` as the slug of ``source`` whenever ``source`` changes."""

    def _transform(changes: Changes) -> Changes:
        if changes.get(source) is None:
            return changes
        return {**changes, target: slugify(changes[source])}

    return _transform


def prepare(changes: Changes, *transforms: Transform) -> Changes:
    for transform in transforms:
        changes = transform(changes)
    return changes


def apply_changes(instance: Any, changes: Changes) -> None:
    for field, value in changes.items():
        setattr(instance, field, value)
