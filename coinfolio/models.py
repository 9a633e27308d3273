from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, String, Text, DateTime, func

Base = declarative_base()

class KeyValue(Base):
    __tablename__ = "kv_store"
    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
