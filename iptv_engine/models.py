"""
SQLAlchemy ORM Models for the IPTV engine snapshot store

This module defines the tables holding the last loaded channel list, the
favorite set, the parsed guide and the source metadata.
"""
from datetime import datetime, timezone
from sqlalchemy import Integer, String, Text, DateTime, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class ChannelRow(Base):
    """Channel model; position preserves playlist order"""
    __tablename__ = "channels"

    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    channel_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    logo_url: Mapped[str] = mapped_column(String, nullable=False, default="")
    group_title: Mapped[str] = mapped_column(String, nullable=False)
    stream_url: Mapped[str] = mapped_column(Text, nullable=False)
    epg_key: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_channels_channel_id", "channel_id"),
    )

    def __repr__(self) -> str:
        return f"<ChannelRow(channel_id={self.channel_id}, name={self.name})>"


class FavoriteRow(Base):
    """Favorite channel id"""
    __tablename__ = "favorites"

    channel_id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))


class ProgramRow(Base):
    """Guide programme; position preserves start order within a key"""
    __tablename__ = "epg_programs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    epg_key: Mapped[str] = mapped_column(String, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    start_time: Mapped[str | None] = mapped_column(String, nullable=True)
    stop_time: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_epg_programs_key_position", "epg_key", "position"),
    )

    def __repr__(self) -> str:
        return f"<ProgramRow(epg_key={self.epg_key}, title={self.title})>"


class SourceRow(Base):
    """Where the current playlist ('playlist') or guide ('epg') was loaded from"""
    __tablename__ = "sources"

    kind: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    loaded_at: Mapped[str] = mapped_column(String, nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
