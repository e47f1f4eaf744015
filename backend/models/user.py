"""User model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from backend.database import Base


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    role = Column(String)  # patient/doctor/nurse/admin
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True)
