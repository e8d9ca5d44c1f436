import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rental_admin.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "user"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False)
    firstName = Column(String(255))
    lastName = Column(String(255))
    roq_user_id = Column(String(255), nullable=False)
    tenant_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    rentals = relationship("Rental", back_populates="user")
    outlets = relationship("Outlet", back_populates="user")


class Outlet(Base):
    __tablename__ = "outlet"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(String(1000))
    image = Column(String(1000))
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False)
    tenant_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="outlets")
    tools = relationship("Tool", back_populates="outlet")
    rentals = relationship("Rental", back_populates="outlet")


class Tool(Base):
    __tablename__ = "tool"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(String(1000))
    outlet_id = Column(String(36), ForeignKey("outlet.id"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    outlet = relationship("Outlet", back_populates="tools")
    rentals = relationship("Rental", back_populates="tool")


class Rental(Base):
    __tablename__ = "rental"

    id = Column(String(36), primary_key=True, default=_new_id)
    rental_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=False)
    tool_id = Column(String(36), ForeignKey("tool.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False)
    outlet_id = Column(String(36), ForeignKey("outlet.id"), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    tool = relationship("Tool", back_populates="rentals")
    user = relationship("User", back_populates="rentals")
    outlet = relationship("Outlet", back_populates="rentals")
