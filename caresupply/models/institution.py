from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from caresupply.database.base import Base

ROLE_ADMIN_APPLICATION = "admin_application"
ROLE_ADMIN_INSTITUTION = "admin_institution"
ROLE_WORKER = "worker"


class Institution(Base):
    __tablename__ = "institutions"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False)

    # Stored encrypted upstream; this service only reads them back for display.
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_patients_institution_active", "institution_id", "is_active"),
    )

    @property
    def display_name(self) -> str:
        return "{} {}".format(self.first_name, self.last_name).strip()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    role = Column(String(30), nullable=False, default=ROLE_ADMIN_INSTITUTION)
    institution_id = Column(Integer, ForeignKey("institutions.id"))
    is_active = Column(Boolean, nullable=False, default=True)


class Worker(Base):
    __tablename__ = "workers"

    id = Column(Integer, primary_key=True)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False)
    username = Column(String, nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)


__all__ = [
    "Institution",
    "Patient",
    "ROLE_ADMIN_APPLICATION",
    "ROLE_ADMIN_INSTITUTION",
    "ROLE_WORKER",
    "User",
    "Worker",
]
