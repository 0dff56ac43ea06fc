from database import Base
from sqlalchemy import CheckConstraint, Column, Integer, String, Text


class Item(Base):
    __tablename__ = "items"

    code = Column(String(8), primary_key=True)
    kind = Column(String(8), nullable=False)  # "url" | "file"
    value = Column(Text, nullable=False)
    created_at = Column(Integer, nullable=False, index=True)


class Admin(Base):
    __tablename__ = "admin"
    __table_args__ = (CheckConstraint("id = 1", name="single_admin"),)

    id = Column(Integer, primary_key=True, default=1)
    username = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    salt = Column(String(64), nullable=False)


class AdminSession(Base):
    __tablename__ = "sessions"

    token = Column(String(128), primary_key=True)
    created_at = Column(Integer, nullable=False)
