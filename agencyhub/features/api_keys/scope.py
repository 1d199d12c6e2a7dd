"""
Scope enforcement for API key principals.
"""

import logging

from agencyhub.core.exceptions import ScopeDeniedError
from agencyhub.features.api_keys.authenticator import AuthenticatedPrincipal

logger = logging.getLogger(__name__)


class ScopeEnforcer:
    """
    Decides whether a key may act on a sub-agency.

    An unscoped key may act on any sub-agency its owner has rights to
    (rights are checked separately). A scoped key may act only on the
    sub-agency it is bound to.
    """

    @staticmethod
    def allowed(principal: AuthenticatedPrincipal, requested_scope_id: str) -> bool:
        if principal.scope_id is None:
            return True
        return principal.scope_id == requested_scope_id

    def require(self, principal: AuthenticatedPrincipal, requested_scope_id: str) -> None:
        """Raise ScopeDeniedError unless ``allowed``."""
        if not self.allowed(principal, requested_scope_id):
            logger.warning(
                "Scope denied: key %s bound to %s requested %s",
                principal.key_id,
                principal.scope_id,
                requested_scope_id,
            )
            raise ScopeDeniedError(
                "API key is not permitted to access this sub-agency",
                {"key_id": principal.key_id},
            )
