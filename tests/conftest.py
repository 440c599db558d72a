"""Shared fixtures for the grouping tests."""

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ticketdedup.grouping.infrastructure import InMemoryVectorStore
from ticketdedup.infrastructure.database import Base

from tests.fakes import (
    FakeClock,
    GroupingEnv,
    InMemoryMessageRepository,
    InMemoryTicketRepository,
    ScriptedLLM,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM(default_embedding=[1.0, 0.0, 0.0, 0.0])


@pytest.fixture
def env(clock, llm) -> GroupingEnv:
    messages = InMemoryMessageRepository(clock)
    tickets = InMemoryTicketRepository(messages, clock)
    environment = GroupingEnv(
        clock=clock,
        llm=llm,
        messages=messages,
        tickets=tickets,
        ticket_store=InMemoryVectorStore(),
        message_store=InMemoryVectorStore(),
    )
    environment.service = environment.build()
    return environment


@pytest.fixture
async def session_maker():
    """Sessions over a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    await engine.dispose()
