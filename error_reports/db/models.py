import uuid

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

STATUS_OPEN = "open"
STATUS_CONCLUDED = "concluded"


class ErrorReport(Base):
    __tablename__ = "error_reports"
    __table_args__ = (Index("ix_error_reports_collection_generated", "collection_path", "generated_at"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    collection_path = Column(String, nullable=False)
    client_name = Column(String, nullable=False)
    technician_name = Column(String, nullable=False)
    error_date = Column(String, nullable=False)
    report_text = Column(Text, nullable=False)
    media_url = Column(String, nullable=True)
    zip_url = Column(String, nullable=True)
    database_saved_on_pc = Column(String, nullable=True)
    reported_by_user_id = Column(String, nullable=False)
    generated_at = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=STATUS_OPEN)
