# vaultgate/models/orm.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultgate.core.db import Base


# ---------- Storage entries (durable key-value records) ----------
class StorageEntry(Base):
    """
    One serialized value per (scope, owner, key).

    scope 'local'   -> owner is the visitor id (survives browser restarts)
    scope 'session' -> owner is the browsing session id (dies with the tab session)
    """
    __tablename__ = "storage_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scope: Mapped[str] = mapped_column(String(16))
    owner: Mapped[str] = mapped_column(String(64), index=True)
    key: Mapped[str] = mapped_column(String(80))
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("scope", "owner", "key", name="uq_storage_scope_owner_key"),
        CheckConstraint("scope IN ('local', 'session')", name="chk_storage_scope"),
    )


# ---------- Leads ----------
class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[Optional[str]] = mapped_column(String(120))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    zip: Mapped[Optional[str]] = mapped_column(String(10))

    # Dedup token of the funnel session that created the lead
    event_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    source_tool: Mapped[str] = mapped_column(String(60), default="vault")
    status: Mapped[str] = mapped_column(String(20), default="new")

    # Funnel answers
    has_quote: Mapped[str] = mapped_column(String(10), default="unknown")  # 'yes' | 'no' | 'unknown'
    window_count: Mapped[Optional[int]] = mapped_column(Integer)
    timeline: Mapped[Optional[str]] = mapped_column(String(60))
    budget_range: Mapped[Optional[str]] = mapped_column(String(60))
    callback_preference: Mapped[Optional[str]] = mapped_column(String(20))
    callback_time: Mapped[Optional[str]] = mapped_column(String(60))

    # First-touch attribution
    utm_source: Mapped[Optional[str]] = mapped_column(String(255))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255))
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255))
    utm_term: Mapped[Optional[str]] = mapped_column(String(255))
    utm_content: Mapped[Optional[str]] = mapped_column(String(255))
    fbclid: Mapped[Optional[str]] = mapped_column(String(255))
    gclid: Mapped[Optional[str]] = mapped_column(String(255))
    msclkid: Mapped[Optional[str]] = mapped_column(String(255))
    fbp: Mapped[Optional[str]] = mapped_column(String(255))
    fbc: Mapped[Optional[str]] = mapped_column(String(255))

    scans: Mapped[List["Scan"]] = relationship(
        back_populates="lead", cascade="all, delete-orphan", order_by="Scan.id"
    )

    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("has_quote IN ('yes', 'no', 'unknown')", name="chk_leads_has_quote"),
        CheckConstraint(
            "status IN ('new', 'contacted', 'qualified', 'converted', 'lost')",
            name="chk_leads_status",
        ),
        Index("ix_leads_status_created", "status", "created_at"),
    )


# ---------- Scans (quote uploads and their scores) ----------
class Scan(Base):
    """
    One uploaded quote per row. File details arrive first (status 'pending');
    the scores complete it.
    """
    __tablename__ = "scans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), index=True)
    event_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending")

    # File
    original_filename: Mapped[Optional[str]] = mapped_column(String(255))
    file_mime: Mapped[Optional[str]] = mapped_column(String(120))
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    file_sha256: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    file_pages: Mapped[Optional[int]] = mapped_column(Integer)

    # Scores (0-100)
    overall_score: Mapped[Optional[int]] = mapped_column(Integer)
    safety_score: Mapped[Optional[int]] = mapped_column(Integer)
    scope_score: Mapped[Optional[int]] = mapped_column(Integer)
    price_score: Mapped[Optional[int]] = mapped_column(Integer)
    fine_print_score: Mapped[Optional[int]] = mapped_column(Integer)
    warranty_score: Mapped[Optional[int]] = mapped_column(Integer)

    # Findings
    warnings: Mapped[Optional[List[str]]] = mapped_column(JSON)
    missing_items: Mapped[Optional[List[str]]] = mapped_column(JSON)
    savings_low: Mapped[Optional[float]] = mapped_column(Float)
    savings_high: Mapped[Optional[float]] = mapped_column(Float)
    raw_result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    lead: Mapped["Lead"] = relationship(back_populates="scans")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="chk_scans_status",
        ),
        Index("ix_scans_lead_created", "lead_id", "created_at"),
    )
