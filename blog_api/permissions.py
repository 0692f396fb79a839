"""
Authorization policy.

Ownership is a capability: a resource that has an owner implements
``is_owned_by(account_id)``.  Anything else (e.g. ``Category``) is gated by
role alone.  Callers must establish that the resource exists before asking;
a missing resource is a ``NotFound``, never a ``Forbidden``.
"""
from typing import Protocol, runtime_checkable

from blog_api.exceptions import Forbidden
from blog_api.models import User


@runtime_checkable
class Owned(Protocol):
    def is_owned_by(self, account_id: int) -> bool: ...


def can_access(actor: User, resource: object) -> bool:
    if actor.is_admin:
        return True
    if isinstance(resource, Owned):
        return resource.is_owned_by(actor.id)
    return False


def authorize(
    actor: User,
    resource: object,
    message: str = "Access denied. You can only modify your own resources.",
) -> None:
    if not can_access(actor, resource):
        raise Forbidden(message)


def require_admin(actor: User, message: str = "Access denied. Insufficient permissions.") -> None:
    if not actor.is_admin:
        raise Forbidden(message)
