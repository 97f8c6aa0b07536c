"""
SQLAlchemy models for database persistence.

Each entity row keeps the full pydantic document in a JSON column next to
the indexed columns used for lookups, booking checks and compare-and-swap.
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ApplicationModel(Base):
    """Database model for job applications."""

    __tablename__ = "job_applications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    seeker_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    company_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    hiring_type: Mapped[str] = mapped_column(String(32), nullable=False)
    # "<job_id>:<seeker_id>" while the application is active, NULL otherwise.
    active_key: Mapped[str | None] = mapped_column(String(512), nullable=True, unique=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class InterviewModel(Base):
    """Database model for interviews."""

    __tablename__ = "interviews"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    application_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    job_id: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    seeker_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    interview_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ScheduleLockModel(Base):
    """One row per company and day; bumped inside every booking transaction."""

    __tablename__ = "schedule_locks"
    __table_args__ = (UniqueConstraint("company_id", "lock_date", name="uq_schedule_lock_company_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(String(255), nullable=False)
    lock_date: Mapped[date] = mapped_column(Date, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SeekerBlockModel(Base):
    """Database model for company blocks on seekers; lifted blocks stay as history."""

    __tablename__ = "seeker_blocks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    seeker_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # "<company_id>:<seeker_id>" while the block is in force, NULL once lifted.
    active_key: Mapped[str | None] = mapped_column(String(512), nullable=True, unique=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    blocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
