"""
RefreshToken model: persisted opaque refresh tokens.
Fields:
- token (unique, opaque random value)
- user_id - FK to users.id
- expires, created_at, created_by_ip
- revoked_at, revoked_by_ip
- replaced_by_token (rotation chain)
- is_expired, is_revoked, is_active
Rows are never deleted; revocation and rotation only flip flags.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey
from models.base_model import BaseModel, Base


class RefreshToken(BaseModel, Base):
    __tablename__ = "refresh_tokens"

    token = Column(String(128), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    expires = Column(DateTime, nullable=False)
    created_by_ip = Column(String(64), nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by_ip = Column(String(64), nullable=True)
    replaced_by_token = Column(String(128), nullable=True)
    is_expired = Column(Boolean, default=False, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<RefreshToken user={self.user_id} active={self.is_active}>"
