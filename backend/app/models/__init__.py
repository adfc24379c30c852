from app.models.user import User, UserRole
from app.models.game import Game, GameTemplate
from app.models.security_audit import SecurityAuditEvent

__all__ = [
    "User",
    "UserRole",
    "Game",
    "GameTemplate",
    "SecurityAuditEvent",
]
