"""
Ticket aggregation — expands ticket → showtime → {movie, theater → cinema}.

Each level is fetched in one batched query over the distinct ids of the
level above, so the number of queries does not grow with the number of
tickets.  A reference whose target no longer exists expands to ``None``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable

from pydantic import ValidationError as SchemaError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.core.exceptions import NotFoundError
from cinebook.models.cinema import Cinema, Movie, Showtime, Theater
from cinebook.crud import users as users_crud
from cinebook.models.user import User, UserTicket
from cinebook.schemas.ticket import (CinemaBrief, MovieRead, Seat,
                                     ShowtimeExpanded, TheaterBrief, TicketRead,
                                     UserTickets, UserWithTickets)
from cinebook.schemas.user import UserRead

logger = logging.getLogger(__name__)


async def _fetch_by_ids(db: AsyncSession, model, ids: Iterable[int]) -> dict:
    wanted = set(ids)
    if not wanted:
        return {}
    result = await db.execute(select(model).where(model.id.in_(wanted)))
    return {row.id: row for row in result.scalars().all()}


async def _fetch_cinema_names(db: AsyncSession, ids: Iterable[int]) -> dict[int, CinemaBrief]:
    wanted = set(ids)
    if not wanted:
        return {}
    result = await db.execute(select(Cinema.id, Cinema.name).where(Cinema.id.in_(wanted)))
    return {row.id: CinemaBrief(id=row.id, name=row.name) for row in result.all()}


def _valid_seats(ticket: UserTicket) -> list[Seat]:
    """Seats that parse as {row, number}; anything else is logged and skipped."""
    raw = ticket.seats
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ticket %d has a non-list seats value; ignoring it", ticket.id)
        return []

    seats = []
    for entry in raw:
        try:
            seats.append(Seat.model_validate(entry))
        except SchemaError:
            logger.warning("Ticket %d has a malformed seat entry: %r", ticket.id, entry)
    return seats


async def _expand(db: AsyncSession, tickets: list[UserTicket]) -> dict[int, TicketRead]:
    """Resolve every ticket's showtime chain; returns ticket id → TicketRead."""
    showtimes = await _fetch_by_ids(db, Showtime, (t.showtime_id for t in tickets))
    movies = await _fetch_by_ids(db, Movie, (s.movie_id for s in showtimes.values()))
    theaters = await _fetch_by_ids(db, Theater, (s.theater_id for s in showtimes.values()))
    cinemas = await _fetch_cinema_names(db, (t.cinema_id for t in theaters.values()))

    expanded_showtimes: dict[int, ShowtimeExpanded] = {}
    for sid, show in showtimes.items():
        movie = movies.get(show.movie_id)
        theater = theaters.get(show.theater_id)
        expanded_showtimes[sid] = ShowtimeExpanded(
            id=show.id,
            showtime=show.showtime,
            is_release=bool(show.is_release),
            movie=MovieRead.model_validate(movie) if movie is not None else None,
            theater=(
                TheaterBrief(
                    id=theater.id,
                    number=theater.number,
                    cinema=cinemas.get(theater.cinema_id),
                )
                if theater is not None
                else None
            ),
        )

    return {
        t.id: TicketRead(
            id=t.id,
            seats=_valid_seats(t),
            showtime=expanded_showtimes.get(t.showtime_id),
        )
        for t in tickets
    }


async def _tickets_by_user(
    db: AsyncSession, user_ids: list[int]
) -> dict[int, list[TicketRead]]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(UserTicket)
        .where(UserTicket.user_id.in_(user_ids))
        .order_by(UserTicket.id)
    )
    tickets = list(result.scalars().all())
    expanded = await _expand(db, tickets)

    grouped: dict[int, list[TicketRead]] = defaultdict(list)
    for t in tickets:
        grouped[t.user_id].append(expanded[t.id])
    return grouped


async def aggregate_tickets(db: AsyncSession, user_id: int) -> UserTickets:
    """Return only the id and expanded tickets of one user."""
    result = await db.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        raise NotFoundError("User not found")

    grouped = await _tickets_by_user(db, [user_id])
    return UserTickets(id=user_id, tickets=grouped.get(user_id, []))


async def aggregate_all_users(db: AsyncSession) -> list[UserWithTickets]:
    """Every user, with tickets expanded. Password hashes are never included."""
    users = await users_crud.list_users(db)
    grouped = await _tickets_by_user(db, [u.id for u in users])
    return [
        UserWithTickets(
            **UserRead.model_validate(u).model_dump(),
            tickets=grouped.get(u.id, []),
        )
        for u in users
    ]
