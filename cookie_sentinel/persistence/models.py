"""SQLAlchemy ORM models for the Cookie Sentinel durable store.

Nested documents (scan configuration, progress, findings, detection
metadata) are stored in JSON columns. JSON columns are not mutation
tracked, so callers always assign new values instead of editing in place.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ..audit.models.scan import ScanStatus
from .database import Base


def new_id() -> str:
    return str(uuid4())


class CookieRecordStatus(str, Enum):
    """Lifecycle of a durable cookie record."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class DetectionMethod(str, Enum):
    """Channel that first reported a cookie."""
    SCAN = "scan"
    EMBED = "embed"


ACTIVE_SCAN_CONDITION = "status IN ('pending', 'in_progress')"


class Domain(Base):
    """A registered domain and its embedded scan configuration."""

    __tablename__ = "domains"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    scan_config: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="DomainScanConfig document including scheduler state"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    cookies: Mapped[List["CookieRecord"]] = relationship(
        "CookieRecord",
        back_populates="domain_ref",
        cascade="all, delete-orphan"
    )


class CookieRecord(Base):
    """Canonical per-domain cookie, deduplicated by name and path."""

    __tablename__ = "cookie_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    domain_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("domains.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, default="/")
    cookie_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    provider: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown")
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")

    description: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    purpose: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    attributes: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    detection: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="method, first_detected, last_seen, frequency, pattern"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CookieRecordStatus.ACTIVE.value,
        index=True
    )
    # "metadata" is reserved on declarative classes
    record_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    domain_ref: Mapped["Domain"] = relationship("Domain", back_populates="cookies")

    __table_args__ = (
        UniqueConstraint("domain_id", "name", "path", name="uq_cookie_records_domain_name_path"),
        Index("ix_cookie_records_domain_status", "domain_id", "status"),
    )

    @property
    def key(self):
        return (self.name, self.path or "/")

    @property
    def is_active(self) -> bool:
        return self.status == CookieRecordStatus.ACTIVE.value

    def snapshot(self) -> Dict[str, Any]:
        """Plain summary used in change reports."""
        return {
            "name": self.name,
            "path": self.path,
            "domain": self.cookie_domain,
            "provider": self.provider,
            "category": self.category,
            "status": self.status,
            "duration": (self.attributes or {}).get("duration"),
            "secure": (self.attributes or {}).get("secure"),
            "http_only": (self.attributes or {}).get("http_only"),
            "same_site": (self.attributes or {}).get("same_site"),
        }


class ScanJob(Base):
    """One execution of the crawl-and-reconcile pipeline for a domain."""

    __tablename__ = "scan_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    domain_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("domains.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ScanStatus.PENDING.value,
        index=True
    )

    scan_config: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    progress: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    findings: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    stats: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    errors: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Append-only error log"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_scan_jobs_domain_status", "domain_id", "status"),
        # At most one pending or in-progress scan per domain
        Index(
            "uq_scan_jobs_active_domain",
            "domain_id",
            unique=True,
            sqlite_where=text(ACTIVE_SCAN_CONDITION),
            postgresql_where=text(ACTIVE_SCAN_CONDITION),
        ),
    )

    @property
    def scan_status(self) -> ScanStatus:
        return ScanStatus(self.status)

    @property
    def is_complete(self) -> bool:
        """Check if the scan is in a terminal state."""
        return self.scan_status.is_terminal
