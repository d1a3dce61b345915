from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ---------------------------------------------------------------------------- #
# SQLAlchemy Models
# ---------------------------------------------------------------------------- #


class Base(AsyncAttrs, DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # Opaque user ID
    name: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    # Issued by the auth service, looked up on every request
    api_token: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    # Relationships
    favorites: Mapped[list["FavoriteGame"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Friend(Base):
    """Friend request edge. Friendship is symmetric once accepted."""

    __tablename__ = "friends"
    __table_args__ = (UniqueConstraint("sender_id", "receiver_id", name="uq_sender_receiver"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    receiver_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    accepted: Mapped[bool] = mapped_column(Boolean, default=False)

    # Relationships
    sender: Mapped["User"] = relationship(foreign_keys=[sender_id], lazy="joined")
    receiver: Mapped["User"] = relationship(foreign_keys=[receiver_id], lazy="joined")


class FavoriteGame(Base):
    """A game (by RAWG ID) a user has favorited."""

    __tablename__ = "favorite_games"
    __table_args__ = (UniqueConstraint("user_id", "game_id", name="uq_user_favorite"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    game_id: Mapped[int] = mapped_column(BigInteger)  # RAWG API ID

    # Relationships
    user: Mapped["User"] = relationship(back_populates="favorites")
