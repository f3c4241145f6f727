"""
Cinema, Theater, Movie & Showtime models — the catalogue a ticket points into.

Cross-collection links are plain integer columns rather than foreign keys;
removing a target leaves the referencing rows pointing at nothing.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from cinebook.db.base import Base


class Cinema(Base):
    __tablename__ = "cinemas"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(200), unique=True, nullable=False)  # type: ignore[assignment]


class Theater(Base):
    __tablename__ = "theaters"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    cinema_id: int = Column(Integer, nullable=False, index=True)  # type: ignore[assignment]
    number: int = Column(Integer, nullable=False)  # type: ignore[assignment]
    seat_rows: str = Column(String(10), nullable=False, default="A")  # type: ignore[assignment]  # last row letter
    seat_columns: int = Column(Integer, nullable=False, default=1)  # type: ignore[assignment]


class Movie(Base):
    __tablename__ = "movies"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    length: int = Column(Integer, nullable=False)  # type: ignore[assignment]  # minutes
    img: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]


class Showtime(Base):
    __tablename__ = "showtimes"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    movie_id: int = Column(Integer, nullable=False, index=True)  # type: ignore[assignment]
    theater_id: int = Column(Integer, nullable=False, index=True)  # type: ignore[assignment]
    showtime: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    is_release: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
