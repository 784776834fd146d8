import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.recruiter import Recruiter
from models.resume_profile import ResumeProfile
from routers import rate_limit
from services.credits import apply_credit_grant


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "recruiter_cv.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", connect_args={"timeout": 15})
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def seed_recruiter(session_maker):
    async def _seed(recruiter_id: str, credits: int = 0):
        async with session_maker() as session:
            session.add(Recruiter(id=recruiter_id, email=f"{recruiter_id}@example.com", name=recruiter_id))
            await session.commit()
            if credits:
                await apply_credit_grant(
                    recruiter_id,
                    session,
                    credits=credits,
                    provider="test",
                    billing_reference=f"seed:{recruiter_id}",
                )
        return recruiter_id

    return _seed


@pytest.fixture
def seed_profiles(session_maker):
    async def _seed(*profiles):
        async with session_maker() as session:
            for data in profiles:
                session.add(ResumeProfile(**data))
            await session.commit()
        return [data["id"] for data in profiles]

    return _seed
