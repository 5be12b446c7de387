"""Relational store on SQLAlchemy async (SQLite via aiosqlite, PostgreSQL via asyncpg)."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import (
    DateTime,
    Insert,
    and_,
    case,
    delete,
    func,
    literal,
    null,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.exceptions import StorageError, StoreConflictError
from app.db.base import Base
from app.db.session import create_session_maker
from app.models import (
    Habit,
    HabitEntry,
    LoginAttempt,
    PendingRegistration,
    User,
    UserSession,
    VerificationCode,
)
from app.storage.base import Store
from app.storage.records import (
    CodePurpose,
    LoginAttemptRecord,
    PendingRegistrationRecord,
    SessionRecord,
    StoredHabit,
    UserRecord,
    VerificationCodeRecord,
)
from app.utils import clock
from app.utils.clock import ensure_aware

logger = logging.getLogger(__name__)


def _user(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        verified=row.email_verified,
        created_at=ensure_aware(row.created_at),
    )


def _code(row: VerificationCode) -> VerificationCodeRecord:
    return VerificationCodeRecord(
        email=row.email,
        purpose=CodePurpose(row.purpose),
        code=row.code,
        created_at=ensure_aware(row.created_at),
        expires_at=ensure_aware(row.expires_at),
        used=row.used,
        attempts=row.attempts,
    )


def _login_attempt(row: LoginAttempt) -> LoginAttemptRecord:
    return LoginAttemptRecord(
        email=row.email,
        count=row.count,
        first_attempt_at=ensure_aware(row.first_attempt_at),
        last_attempt_at=ensure_aware(row.last_attempt_at),
        locked_until=ensure_aware(row.locked_until) if row.locked_until else None,
    )


def _session(row: UserSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        created_at=ensure_aware(row.created_at),
        last_activity=ensure_aware(row.last_activity),
        csrf_token=row.csrf_token,
        user_id=row.user_id,
        email=row.email,
    )


class SQLStore(Store):
    def __init__(self, engine: AsyncEngine, create_tables: bool = False) -> None:
        self.engine = engine
        self.session_maker: async_sessionmaker[AsyncSession] = create_session_maker(engine)
        self.create_tables = create_tables

    def _insert(self, model: type[Base]) -> Insert:
        """Dialect INSERT with ON CONFLICT support."""
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(model)
        return sqlite.insert(model)

    async def init(self) -> None:
        if self.create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> bool:
        try:
            async with self.session_maker() as db:
                await db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database ping failed: {e}")
            return False

    # Users

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        async with self.session_maker() as db:
            result = await db.execute(select(User).where(User.email == email))
            row = result.scalar_one_or_none()
            return _user(row) if row else None

    async def get_user_by_id(self, user_id: int) -> UserRecord | None:
        async with self.session_maker() as db:
            row = await db.get(User, user_id)
            return _user(row) if row else None

    async def create_user(
        self,
        email: str,
        password_hash: str,
        verified: bool = True,
        created_at: datetime | None = None,
    ) -> UserRecord:
        async with self.session_maker() as db:
            user = User(
                email=email,
                password_hash=password_hash,
                email_verified=verified,
                created_at=created_at or clock.utcnow(),
            )
            db.add(user)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise StoreConflictError(email) from e
            await db.refresh(user)
            return _user(user)

    async def update_password(self, user_id: int, password_hash: str) -> bool:
        async with self.session_maker() as db:
            result = await db.execute(
                update(User).where(User.id == user_id).values(password_hash=password_hash)
            )
            await db.commit()
            return result.rowcount == 1

    async def delete_user(self, user_id: int) -> bool:
        # Explicit child deletes so SQLite without FK enforcement behaves like PostgreSQL
        async with self.session_maker.begin() as db:
            habit_ids = select(Habit.id).where(Habit.user_id == user_id)
            await db.execute(delete(HabitEntry).where(HabitEntry.habit_id.in_(habit_ids)))
            await db.execute(delete(Habit).where(Habit.user_id == user_id))
            await db.execute(delete(UserSession).where(UserSession.user_id == user_id))
            result = await db.execute(delete(User).where(User.id == user_id))
            return result.rowcount == 1

    # Pending registrations

    async def put_pending_registration(self, record: PendingRegistrationRecord) -> None:
        async with self.session_maker.begin() as db:
            await db.merge(
                PendingRegistration(
                    email=record.email,
                    password_hash=record.password_hash,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                )
            )

    async def get_pending_registration(self, email: str) -> PendingRegistrationRecord | None:
        async with self.session_maker() as db:
            row = await db.get(PendingRegistration, email)
            if row is None:
                return None
            return PendingRegistrationRecord(
                email=row.email,
                password_hash=row.password_hash,
                created_at=ensure_aware(row.created_at),
                expires_at=ensure_aware(row.expires_at),
            )

    async def delete_pending_registration(self, email: str) -> None:
        async with self.session_maker.begin() as db:
            await db.execute(delete(PendingRegistration).where(PendingRegistration.email == email))

    # Verification codes

    async def put_verification_code(self, record: VerificationCodeRecord) -> None:
        async with self.session_maker.begin() as db:
            await db.merge(
                VerificationCode(
                    email=record.email,
                    purpose=CodePurpose(record.purpose).value,
                    code=record.code,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                    used=record.used,
                    attempts=record.attempts,
                )
            )

    async def get_verification_code(
        self, email: str, purpose: CodePurpose
    ) -> VerificationCodeRecord | None:
        async with self.session_maker() as db:
            row = await db.get(VerificationCode, (email, CodePurpose(purpose).value))
            return _code(row) if row else None

    async def claim_code_attempt(
        self, email: str, purpose: CodePurpose, code: str, max_attempts: int
    ) -> int | None:
        # Conditional UPDATE: the cap holds however many guesses arrive at once
        async with self.session_maker.begin() as db:
            where = (
                VerificationCode.email == email,
                VerificationCode.purpose == CodePurpose(purpose).value,
            )
            result = await db.execute(
                update(VerificationCode)
                .where(
                    *where,
                    VerificationCode.code == code,
                    VerificationCode.used.is_(False),
                    VerificationCode.attempts < max_attempts,
                )
                .values(attempts=VerificationCode.attempts + 1)
            )
            if result.rowcount != 1:
                return None
            attempts = await db.execute(select(VerificationCode.attempts).where(*where))
            return attempts.scalar_one()

    async def consume_verification_code(self, email: str, purpose: CodePurpose, code: str) -> bool:
        # Single conditional UPDATE: only one concurrent caller can flip used
        async with self.session_maker.begin() as db:
            result = await db.execute(
                update(VerificationCode)
                .where(
                    VerificationCode.email == email,
                    VerificationCode.purpose == CodePurpose(purpose).value,
                    VerificationCode.code == code,
                    VerificationCode.used.is_(False),
                )
                .values(used=True)
            )
            return result.rowcount == 1

    async def delete_verification_code(self, email: str, purpose: CodePurpose) -> None:
        async with self.session_maker.begin() as db:
            await db.execute(
                delete(VerificationCode).where(
                    VerificationCode.email == email,
                    VerificationCode.purpose == CodePurpose(purpose).value,
                )
            )

    async def delete_verification_codes(self, email: str) -> None:
        async with self.session_maker.begin() as db:
            await db.execute(delete(VerificationCode).where(VerificationCode.email == email))

    async def latest_code_issued_at(self, email: str) -> datetime | None:
        async with self.session_maker() as db:
            result = await db.execute(
                select(func.max(VerificationCode.created_at)).where(VerificationCode.email == email)
            )
            latest = result.scalar_one_or_none()
            return ensure_aware(latest) if latest else None

    # Login attempts

    async def get_login_attempt(self, email: str) -> LoginAttemptRecord | None:
        async with self.session_maker() as db:
            row = await db.get(LoginAttempt, email)
            return _login_attempt(row) if row else None

    async def record_login_failure(
        self, email: str, now: datetime, max_attempts: int, lockout: timedelta
    ) -> LoginAttemptRecord:
        # One upsert decides the new state from the stored row, the same rules
        # as LoginAttemptRecord.after_failure
        at = literal(now, DateTime(timezone=True))
        until = literal(now + lockout, DateTime(timezone=True))
        cutoff = literal(now - lockout, DateTime(timezone=True))

        locked = and_(LoginAttempt.locked_until.is_not(None), LoginAttempt.locked_until > at)
        restart = or_(LoginAttempt.locked_until.is_not(None), LoginAttempt.last_attempt_at < cutoff)
        count = case((locked, LoginAttempt.count), (restart, 1), else_=LoginAttempt.count + 1)

        first = LoginAttemptRecord.first_failure(email, now, max_attempts, lockout)
        stmt = self._insert(LoginAttempt).values(
            email=email,
            count=first.count,
            first_attempt_at=first.first_attempt_at,
            last_attempt_at=first.last_attempt_at,
            locked_until=first.locked_until,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["email"],
            set_={
                "count": count,
                "first_attempt_at": case(
                    (locked, LoginAttempt.first_attempt_at),
                    (restart, at),
                    else_=LoginAttempt.first_attempt_at,
                ),
                "last_attempt_at": case((locked, LoginAttempt.last_attempt_at), else_=at),
                "locked_until": case(
                    (locked, LoginAttempt.locked_until),
                    (count >= max_attempts, until),
                    else_=null(),
                ),
            },
        )

        async with self.session_maker.begin() as db:
            await db.execute(stmt)
            result = await db.execute(select(LoginAttempt).where(LoginAttempt.email == email))
            return _login_attempt(result.scalar_one())

    async def delete_login_attempt(self, email: str) -> None:
        async with self.session_maker.begin() as db:
            await db.execute(delete(LoginAttempt).where(LoginAttempt.email == email))

    # Sessions

    async def get_session(self, session_id: str) -> SessionRecord | None:
        async with self.session_maker() as db:
            row = await db.get(UserSession, session_id)
            return _session(row) if row else None

    async def put_session(self, record: SessionRecord) -> None:
        async with self.session_maker.begin() as db:
            await db.merge(
                UserSession(
                    id=record.id,
                    user_id=record.user_id,
                    email=record.email,
                    csrf_token=record.csrf_token,
                    created_at=record.created_at,
                    last_activity=record.last_activity,
                )
            )

    async def delete_session(self, session_id: str) -> None:
        async with self.session_maker.begin() as db:
            await db.execute(delete(UserSession).where(UserSession.id == session_id))

    async def delete_user_sessions(self, user_id: int) -> None:
        async with self.session_maker.begin() as db:
            await db.execute(delete(UserSession).where(UserSession.user_id == user_id))

    # Habits

    async def get_habits(self, user_id: int) -> list[StoredHabit]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(Habit).where(Habit.user_id == user_id).order_by(Habit.sort_order, Habit.id)
            )
            habits = result.scalars().all()
            if not habits:
                return []

            entries = await db.execute(
                select(HabitEntry.habit_id, HabitEntry.date)
                .where(
                    HabitEntry.habit_id.in_([h.id for h in habits]),
                    HabitEntry.completed.is_(True),
                )
                .order_by(HabitEntry.date)
            )
            dates: dict[int, list[str]] = {}
            for habit_id, date in entries.all():
                dates.setdefault(habit_id, []).append(date)

            return [
                StoredHabit(
                    id=h.client_id,
                    name_encrypted=h.name_encrypted,
                    color=h.color,
                    sort_order=h.sort_order,
                    completed_dates=dates.get(h.id, []),
                )
                for h in habits
            ]

    async def replace_habits(self, user_id: int, habits: list[StoredHabit]) -> None:
        try:
            async with self.session_maker.begin() as db:
                habit_ids = select(Habit.id).where(Habit.user_id == user_id)
                await db.execute(delete(HabitEntry).where(HabitEntry.habit_id.in_(habit_ids)))
                await db.execute(delete(Habit).where(Habit.user_id == user_id))

                for stored in habits:
                    habit = Habit(
                        user_id=user_id,
                        client_id=stored.id,
                        name_encrypted=stored.name_encrypted,
                        color=stored.color,
                        sort_order=stored.sort_order,
                    )
                    db.add(habit)
                    await db.flush()
                    db.add_all(
                        HabitEntry(habit_id=habit.id, date=date, completed=True)
                        for date in sorted(set(stored.completed_dates))
                    )
        except SQLAlchemyError as e:
            logger.error(f"Habit replace failed for user {user_id}: {e}")
            raise StorageError("Failed to save habits") from e

    # Maintenance

    async def purge_expired(self, now: datetime, session_timeout_seconds: int) -> int:
        idle_cutoff = now - timedelta(seconds=session_timeout_seconds)
        async with self.session_maker.begin() as db:
            removed = 0
            for stmt in (
                delete(VerificationCode).where(VerificationCode.expires_at < now),
                delete(PendingRegistration).where(PendingRegistration.expires_at < now),
                delete(LoginAttempt).where(LoginAttempt.locked_until <= now),
                delete(UserSession).where(UserSession.last_activity < idle_cutoff),
            ):
                result = await db.execute(stmt)
                removed += result.rowcount or 0
            return removed
