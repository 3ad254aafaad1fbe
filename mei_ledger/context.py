"""
Owner context.

DESIGN DECISION: The current owner id is not module-level state. An
OwnerContext is built once per client session, handed to every service,
and asks the identity provider for the owner on each operation. A cached
id is kept only as long as the provider keeps reporting the same owner;
when the owner changes, everything registered with the context is
invalidated.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog


logger = structlog.get_logger("mei_ledger.context")


class NotAuthenticatedError(Exception):
    """No owner is signed in."""
    pass


class IdentityProvider(ABC):
    """Source of the signed-in owner id (the auth flow lives elsewhere)."""

    @abstractmethod
    async def get_current_owner_id(self) -> Optional[str]:
        """Return the signed-in owner's id, or None when signed out."""


class StaticIdentityProvider(IdentityProvider):
    """Identity provider with a settable owner. Used by tests and scripts."""

    def __init__(self, owner_id: Optional[str] = None):
        self.owner_id = owner_id

    async def get_current_owner_id(self) -> Optional[str]:
        return self.owner_id

    def sign_in(self, owner_id: str) -> None:
        self.owner_id = owner_id

    def sign_out(self) -> None:
        self.owner_id = None


class OwnerContext:
    """
    Resolves the current owner for service operations.

    Usage:
        context = OwnerContext(provider)
        owner_id = await context.require_owner()
    """

    def __init__(self, provider: IdentityProvider):
        self._provider = provider
        self._cached_owner_id: Optional[str] = None
        self._invalidation_hooks: list[Callable[[], None]] = []

    @property
    def cached_owner_id(self) -> Optional[str]:
        return self._cached_owner_id

    def on_owner_change(self, hook: Callable[[], None]) -> None:
        """Register a callback that drops per-owner cached state."""
        self._invalidation_hooks.append(hook)

    def invalidate(self) -> None:
        """Forget the cached owner and run all invalidation hooks."""
        self._cached_owner_id = None
        for hook in self._invalidation_hooks:
            hook()

    async def current_owner(self) -> Optional[str]:
        """The signed-in owner id, or None."""
        owner_id = await self._provider.get_current_owner_id()
        if owner_id != self._cached_owner_id:
            if self._cached_owner_id is not None:
                logger.info(
                    "owner_changed",
                    previous=self._cached_owner_id,
                    current=owner_id,
                )
                self.invalidate()
            self._cached_owner_id = owner_id
        return owner_id

    async def require_owner(self) -> str:
        """
        The signed-in owner id.

        Raises:
            NotAuthenticatedError: If nobody is signed in
        """
        owner_id = await self.current_owner()
        if not owner_id:
            raise NotAuthenticatedError("User not authenticated")
        return owner_id
