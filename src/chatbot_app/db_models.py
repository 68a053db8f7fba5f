from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class RotationIndex(Base):
    __tablename__ = "rotation_indexes"

    pool_name: Mapped[str] = mapped_column(String(191), primary_key=True)
    key_index: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class FailoverEventRecord(Base):
    __tablename__ = "failover_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    pool_name: Mapped[str] = mapped_column(String(191), index=True)
    failed_index: Mapped[int] = mapped_column(Integer)
    status_code: Mapped[int] = mapped_column(Integer)
    key_count: Mapped[int] = mapped_column(Integer)
