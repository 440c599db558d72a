"""
Grouping Infrastructure Repositories
=====================================

SQLAlchemy implementations of the ticket and message repositories.

Repositories flush but never commit; the session owner (request handler or
sequenced grouping job) commits once the unit of work is done.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketdedup.config import TicketStatus
from ticketdedup.core import DuplicateCanonicalKeyException, RepositoryException
from ticketdedup.grouping.application.interfaces import IMessageRepository, ITicketRepository
from ticketdedup.grouping.domain import Ticket, TicketMessage, TicketSummary
from ticketdedup.grouping.infrastructure.models import TicketMessageModel, TicketModel


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def ticket_to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        title=model.title,
        category=model.category,
        status=model.status,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
        canonical_key=model.canonical_key,
        embedding=list(model.embedding) if model.embedding else None,
        summary_embedding=list(model.summary_embedding) if model.summary_embedding else None,
        assignees=list(model.assignees or []),
        reporter_user_id=model.reporter_user_id,
        reporter_username=model.reporter_username,
        summary=TicketSummary.from_dict(model.summary),
    )


def message_to_entity(model: TicketMessageModel) -> TicketMessage:
    return TicketMessage(
        id=str(model.id),
        ticket_id=str(model.ticket_id),
        channel_id=model.channel_id,
        ts=model.ts,
        root_thread_ts=model.root_thread_ts,
        user_id=model.user_id,
        username=model.username,
        team_id=model.team_id,
        event_id=model.event_id,
        text=model.text,
        permalink=model.permalink,
        embedding=list(model.embedding) if model.embedding else None,
        canonical_key=model.canonical_key,
        intent_action=model.intent_action,
        intent_object=model.intent_object,
        intent_value=model.intent_value,
        intent_key=model.intent_key,
        is_redundant=model.is_redundant,
        redundant_of_message_id=str(model.redundant_of_message_id) if model.redundant_of_message_id else None,
        created_at=_as_utc(model.created_at),
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """SQLAlchemy implementation for tickets."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, ticket_id: str) -> Optional[TicketModel]:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None
        return await self._session.get(TicketModel, ticket_uuid)

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""
        model = await self._get_model(ticket_id)
        return ticket_to_entity(model) if model else None

    async def find_open_by_thread(self, channel_id: str, root_thread_ts: str) -> Optional[Ticket]:
        """Open ticket holding a message from this thread."""
        stmt = (
            select(TicketModel)
            .join(TicketMessageModel, TicketMessageModel.ticket_id == TicketModel.id)
            .where(
                TicketMessageModel.channel_id == channel_id,
                TicketMessageModel.root_thread_ts == root_thread_ts,
                TicketModel.status == TicketStatus.OPEN,
            )
            .order_by(TicketModel.updated_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return ticket_to_entity(model) if model else None

    async def find_open_by_canonical_key(self, canonical_key: str) -> Optional[Ticket]:
        """Open ticket with this canonical key."""
        stmt = select(TicketModel).where(
            TicketModel.canonical_key == canonical_key,
            TicketModel.status == TicketStatus.OPEN,
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return ticket_to_entity(model) if model else None

    async def get_open_by_ids(
        self,
        ticket_ids: List[str],
        updated_since: Optional[datetime] = None
    ) -> List[Ticket]:
        """Open tickets among ticket_ids, optionally updated since a cut-off."""
        uuids = [u for u in (_parse_uuid(t) for t in ticket_ids) if u is not None]
        if not uuids:
            return []

        stmt = select(TicketModel).where(
            TicketModel.id.in_(uuids),
            TicketModel.status == TicketStatus.OPEN,
        )
        if updated_since is not None:
            stmt = stmt.where(TicketModel.updated_at >= updated_since)
        result = await self._session.execute(stmt)
        return [ticket_to_entity(m) for m in result.scalars().all()]

    async def find_most_recent_open_in_channel(
        self,
        channel_id: str,
        minutes_back: int,
        now: Optional[datetime] = None
    ) -> Optional[Ticket]:
        """Most recently updated open ticket with a message in the channel in the window."""
        since = (now or datetime.now(timezone.utc)) - timedelta(minutes=minutes_back)
        stmt = (
            select(TicketModel)
            .join(TicketMessageModel, TicketMessageModel.ticket_id == TicketModel.id)
            .where(
                TicketMessageModel.channel_id == channel_id,
                TicketMessageModel.created_at >= since,
                TicketModel.status == TicketStatus.OPEN,
            )
            .order_by(TicketModel.updated_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return ticket_to_entity(model) if model else None

    async def create(self, ticket: Ticket) -> Ticket:
        """
        Persist a new ticket.

        Raises:
            DuplicateCanonicalKeyException: If an open ticket owns the key
            RepositoryException: On any other integrity error
        """
        model = TicketModel(
            id=_parse_uuid(ticket.id) or uuid4(),
            title=ticket.title[:200],
            category=ticket.category,
            status=ticket.status,
            canonical_key=ticket.canonical_key,
            embedding=ticket.embedding,
            summary_embedding=ticket.summary_embedding,
            assignees=list(ticket.assignees),
            reporter_user_id=ticket.reporter_user_id,
            reporter_username=ticket.reporter_username,
            summary=ticket.summary.to_dict() if ticket.summary else None,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            await self._session.rollback()
            if ticket.canonical_key:
                raise DuplicateCanonicalKeyException(ticket.canonical_key)
            raise RepositoryException(f"Failed to create ticket: {e.orig}")

        return ticket_to_entity(model)

    async def update(self, ticket: Ticket) -> Ticket:
        """Persist mutable ticket fields."""
        model = await self._get_model(ticket.id)
        if model is None:
            raise RepositoryException(f"Ticket {ticket.id} does not exist")

        model.title = ticket.title[:200]
        model.category = ticket.category
        model.status = ticket.status
        model.canonical_key = ticket.canonical_key
        model.embedding = ticket.embedding
        model.summary_embedding = ticket.summary_embedding
        model.assignees = list(ticket.assignees)
        model.summary = ticket.summary.to_dict() if ticket.summary else None
        model.updated_at = ticket.updated_at

        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update ticket {ticket.id}: {e}")
        return ticket_to_entity(model)

    async def touch(self, ticket_id: str, at: Optional[datetime] = None) -> None:
        """Bump updated_at."""
        model = await self._get_model(ticket_id)
        if model is None:
            raise RepositoryException(f"Ticket {ticket_id} does not exist")
        model.updated_at = at or datetime.now(timezone.utc)
        await self._session.flush()

    async def list_tickets(self, status: Optional[str] = None, limit: int = 100) -> List[Ticket]:
        """List tickets, most recently updated first."""
        stmt = select(TicketModel).order_by(TicketModel.updated_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(TicketModel.status == status)
        result = await self._session.execute(stmt)
        return [ticket_to_entity(m) for m in result.scalars().all()]


class SQLAlchemyMessageRepository(IMessageRepository):
    """SQLAlchemy implementation for ticket messages."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def upsert(self, message: TicketMessage) -> TicketMessage:
        """Insert, or update the existing row with the same (channel_id, ts)."""
        ticket_uuid = _parse_uuid(message.ticket_id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket ID: {message.ticket_id}")

        stmt = select(TicketMessageModel).where(
            TicketMessageModel.channel_id == message.channel_id,
            TicketMessageModel.ts == message.ts,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            model = TicketMessageModel(
                id=uuid4(),
                channel_id=message.channel_id,
                ts=message.ts,
                created_at=message.created_at or datetime.now(timezone.utc),
            )
            self._session.add(model)

        model.ticket_id = ticket_uuid
        model.root_thread_ts = message.root_thread_ts
        model.user_id = message.user_id
        model.username = message.username
        model.team_id = message.team_id
        model.event_id = message.event_id
        model.text = message.text
        model.permalink = message.permalink
        model.embedding = message.embedding
        model.canonical_key = message.canonical_key
        model.intent_action = message.intent_action
        model.intent_object = message.intent_object
        model.intent_value = message.intent_value
        model.intent_key = message.intent_key
        model.is_redundant = message.is_redundant
        model.redundant_of_message_id = _parse_uuid(message.redundant_of_message_id)

        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to upsert message {message.channel_id}/{message.ts}: {e}")
        return message_to_entity(model)

    async def list_by_ticket(self, ticket_id: str) -> List[TicketMessage]:
        """All messages of a ticket, oldest first."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return []
        stmt = (
            select(TicketMessageModel)
            .where(TicketMessageModel.ticket_id == ticket_uuid)
            .order_by(TicketMessageModel.created_at.asc(), TicketMessageModel.ts.asc())
        )
        result = await self._session.execute(stmt)
        return [message_to_entity(m) for m in result.scalars().all()]

    async def recent_by_ticket(self, ticket_id: str, limit: int) -> List[TicketMessage]:
        """Latest messages of a ticket, oldest first."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return []
        stmt = (
            select(TicketMessageModel)
            .where(TicketMessageModel.ticket_id == ticket_uuid)
            .order_by(TicketMessageModel.created_at.desc(), TicketMessageModel.ts.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [message_to_entity(m) for m in reversed(result.scalars().all())]

    async def find_by_intent_key(
        self,
        ticket_id: str,
        intent_key: str,
        exclude_ts: Optional[str] = None
    ) -> Optional[TicketMessage]:
        """Earliest message of the ticket with this intent key."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None
        stmt = select(TicketMessageModel).where(
            TicketMessageModel.ticket_id == ticket_uuid,
            TicketMessageModel.intent_key == intent_key,
        )
        if exclude_ts is not None:
            stmt = stmt.where(TicketMessageModel.ts != exclude_ts)
        stmt = stmt.order_by(TicketMessageModel.created_at.asc()).limit(1)
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return message_to_entity(model) if model else None
