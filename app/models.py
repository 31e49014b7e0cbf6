from datetime import datetime
from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base

class Mapping(Base):
    __tablename__ = "mappings"
    __table_args__ = (
        Index("ix_mappings_enabled_expiry", "enabled", "expiry"),
    )

    path: Mapped[str] = mapped_column(String(255), primary_key=True)
    target: Mapped[str] = mapped_column(String(2048), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # naive UTC
    expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_wechat: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    qr_code_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
