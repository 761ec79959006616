"""
Access Control for the USDF CDP engine.

A small role table standing in for the deployment's permission system.
Components only ever ask `is_authorized(caller, role)`.
"""

import logging
from enum import Enum

from protocol_errors import InvalidAddress, Unauthorized

logger = logging.getLogger(__name__)


class Role(Enum):
    ADMIN = 0
    POSITION_GATEWAY = 1  # BorrowerOperations
    LEDGER = 2            # TroveManager
    LIQUIDATOR = 3


class AccessControl:
    """
    Maps addresses to the roles they hold.
    """

    def __init__(self, admin):
        if not admin:
            raise InvalidAddress("Admin address required")
        self.roles = {role: set() for role in Role}
        self.roles[Role.ADMIN].add(admin)

    def is_authorized(self, caller, role):
        return caller in self.roles[role]

    def require(self, caller, *roles):
        """Raises Unauthorized unless caller holds one of the given roles."""
        for role in roles:
            if caller in self.roles[role]:
                return
        names = ", ".join(role.name for role in roles)
        raise Unauthorized(f"{caller} lacks role {names}")

    def grant_role(self, caller, role, account):
        self.require(caller, Role.ADMIN)
        if not account:
            raise InvalidAddress("Cannot grant a role to an empty address")
        self.roles[role].add(account)
        logger.info("Granted %s to %s", role.name, account)

    def revoke_role(self, caller, role, account):
        self.require(caller, Role.ADMIN)
        self.roles[role].discard(account)
        logger.info("Revoked %s from %s", role.name, account)
