from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigIntPK


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")  # admin/user

    # Processor customer identity, created on first subscription checkout
    processor_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Connected payout account (marketplace destination)
    connect_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    connect_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # pending/active/disabled

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    @property
    def has_active_connect_account(self) -> bool:
        return bool(self.connect_account_id) and self.connect_status == "active"
