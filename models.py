from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Organization(Base):
    """Customer organization a deal belongs to."""

    __tablename__ = "organizations"

    id = Column(String, primary_key=True, index=True)
    name = Column(String)

    deals = relationship("Deal", back_populates="organization")


class Deal(Base):
    """
    Budget/deal imported from the CRM.
    The Drive folder columns are filled the first time a document is stored.
    """

    __tablename__ = "deals"

    id = Column(String, primary_key=True, index=True)  # CRM deal id
    title = Column(String)
    organization_id = Column(String, ForeignKey("organizations.id"), nullable=True, index=True)
    drive_folder_id = Column(String, nullable=True)
    drive_folder_web_view_link = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    organization = relationship("Organization", back_populates="deals")
    sessions = relationship("TrainingSession", back_populates="deal")


class TrainingSession(Base):
    __tablename__ = "training_sessions"

    id = Column(String, primary_key=True, index=True)  # UUID
    deal_id = Column(String, ForeignKey("deals.id"), nullable=False, index=True)
    name = Column(String, nullable=True)
    drive_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    deal = relationship("Deal", back_populates="sessions")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)


class UserDocument(Base):
    """Employee document. The local bytes are the source of truth; Drive holds a shared copy."""

    __tablename__ = "user_documents"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=True)
    file_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    document_type = Column(String, nullable=True)
    drive_file_id = Column(String, nullable=True)
    drive_folder_id = Column(String, nullable=True, index=True)
    drive_web_view_link = Column(String, nullable=True)
    drive_web_content_link = Column(String, nullable=True)
    file_data = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class DealDocument(Base):
    __tablename__ = "deal_documents"

    id = Column(String, primary_key=True, index=True)
    deal_id = Column(String, ForeignKey("deals.id"), nullable=False, index=True)
    owner_id = Column(String, nullable=True, index=True)
    file_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    drive_file_id = Column(String, nullable=True)
    drive_folder_id = Column(String, nullable=True, index=True)
    drive_web_view_link = Column(String, nullable=True)
    drive_web_content_link = Column(String, nullable=True)
    file_data = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SessionDocument(Base):
    __tablename__ = "session_documents"

    id = Column(String, primary_key=True, index=True)
    deal_id = Column(String, ForeignKey("deals.id"), nullable=False, index=True)
    session_id = Column(String, ForeignKey("training_sessions.id"), nullable=False, index=True)
    file_type = Column(String, nullable=False, default="bin")
    share_with_trainer = Column(Boolean, nullable=False, default=False)
    file_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    drive_file_id = Column(String, nullable=True)
    drive_folder_id = Column(String, nullable=True, index=True)
    drive_web_view_link = Column(String, nullable=True)
    drive_web_content_link = Column(String, nullable=True)
    file_data = Column(LargeBinary, nullable=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Trainer(Base):
    __tablename__ = "trainers"

    id = Column(String, primary_key=True, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    full_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)


class TrainerDocument(Base):
    """Trainer paperwork (CV, certificates...). Stored as '<type label> - <original name>'."""

    __tablename__ = "trainer_documents"

    id = Column(String, primary_key=True, index=True)
    trainer_id = Column(String, ForeignKey("trainers.id"), nullable=False, index=True)
    document_type = Column(String, nullable=False, default="otros")
    file_name = Column(String, nullable=False)
    original_file_name = Column(String, nullable=True)
    mime_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    drive_file_id = Column(String, nullable=True)
    drive_folder_id = Column(String, nullable=True, index=True)
    drive_web_view_link = Column(String, nullable=True)
    drive_web_content_link = Column(String, nullable=True)
    file_data = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class OfficePayroll(Base):
    """Monthly expense ledger row per user. Expense documents add to other_expenses."""

    __tablename__ = "office_payrolls"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_office_payroll_user_period"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    other_expenses = Column(Numeric(12, 2), nullable=False, default=0)
    total_extras = Column(Numeric(12, 2), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
