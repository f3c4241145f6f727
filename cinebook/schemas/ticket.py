"""Pydantic schemas for a user's expanded ticket history."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from cinebook.schemas.user import UserRead


class CinemaBrief(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class TheaterBrief(BaseModel):
    id: int
    number: int
    cinema: CinemaBrief | None = None


class MovieRead(BaseModel):
    id: int
    name: str
    length: int
    img: str | None = None

    model_config = {"from_attributes": True}


class ShowtimeExpanded(BaseModel):
    id: int
    showtime: datetime
    is_release: bool
    movie: MovieRead | None = None
    theater: TheaterBrief | None = None


class Seat(BaseModel):
    row: str
    number: int


class TicketRead(BaseModel):
    id: int
    seats: list[Seat] = []
    showtime: ShowtimeExpanded | None = None


class UserTickets(BaseModel):
    id: int
    tickets: list[TicketRead]


class UserWithTickets(UserRead):
    tickets: list[TicketRead] = []


class TicketsResponse(BaseModel):
    success: bool = True
    data: UserTickets


class UserListResponse(BaseModel):
    success: bool = True
    count: int
    data: list[UserWithTickets]
