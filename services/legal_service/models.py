from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from shared.clock import utcnow
from shared.config.database import Base


class LegalPage(Base):
    __tablename__ = "legal_pages"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(80), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False, default="")
    is_published = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
