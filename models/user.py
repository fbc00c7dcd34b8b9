"""
User model: the identity a session is issued for.
Roles are one of member / owner / admin. Users are deactivated, never deleted,
so quotes and refresh tokens keep pointing at a valid row.
"""
from models.base_model import Base, BaseModel
from sqlalchemy import Column, String, Integer, Boolean, DateTime, text


class User(BaseModel, Base):
    __tablename__ = "users"
    username = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    # absent for federated-login-only accounts
    password_hash = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, default="member", server_default=text("'member'"))
    company_id = Column(Integer, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<User {self.username} role={self.role}>"
