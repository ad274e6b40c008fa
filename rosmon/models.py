from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from rosmon.database import Base


class RouterRecord(Base):
    """Connection settings of one RouterOS device, scoped by tenant"""
    __tablename__ = "routers"
    
    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    host = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False)
    username = Column(String(100), nullable=False, default="admin")
    password = Column(String(200), nullable=False, default="")
    method = Column(String(10), nullable=False, default="rpc")  # 'rpc' or 'rest'
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
