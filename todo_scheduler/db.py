from sqlmodel import SQLModel
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy import or_

import logging
from typing import List

from .models import Task

logger = logging.getLogger(__name__)


class TaskNotFound(LookupError):
    pass


class TaskStore:
    """Task persistence on top of an async SQLAlchemy engine.

    One store is created per application (see ``create_app``) and handed to
    request handlers through a dependency; every method opens its own
    session so calls are independent of each other.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        # NullPool: aiosqlite connections are cheap and this avoids
        # non-checked-in connection warnings at interpreter shutdown.
        self.engine = create_async_engine(database_url, echo=False, future=True, poolclass=NullPool)
        self.async_session = sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info('task store ready at %s', self.database_url)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def add_task(self, task: Task) -> int:
        async with self.async_session() as sess:
            sess.add(task)
            await sess.commit()
            await sess.refresh(task)
            return int(task.id)

    async def get_tasks(self, limit: int) -> List[Task]:
        async with self.async_session() as sess:
            q = await sess.exec(select(Task).order_by(Task.date, Task.id).limit(limit))
            return list(q.all())

    async def get_tasks_by_date(self, limit: int, date: str) -> List[Task]:
        async with self.async_session() as sess:
            q = await sess.exec(select(Task).where(Task.date == date).order_by(Task.id).limit(limit))
            return list(q.all())

    async def get_tasks_by_title(self, limit: int, search: str) -> List[Task]:
        """Substring match on title or comment."""
        cond = or_(Task.title.contains(search, autoescape=True), Task.comment.contains(search, autoescape=True))
        async with self.async_session() as sess:
            q = await sess.exec(select(Task).where(cond).order_by(Task.date, Task.id).limit(limit))
            return list(q.all())

    async def get_task(self, task_id: int) -> Task:
        async with self.async_session() as sess:
            task = await sess.get(Task, task_id)
            if not task:
                raise TaskNotFound(f'task with id={task_id} not found')
            return task

    async def update_task(self, task: Task) -> None:
        async with self.async_session() as sess:
            row = await sess.get(Task, task.id)
            if not row:
                raise TaskNotFound(f'task with id={task.id} not found (nothing updated)')
            row.date = task.date
            row.title = task.title
            row.comment = task.comment
            row.repeat = task.repeat
            sess.add(row)
            await sess.commit()

    async def update_task_date(self, task_id: int, date: str) -> None:
        async with self.async_session() as sess:
            row = await sess.get(Task, task_id)
            if not row:
                raise TaskNotFound(f'task with id={task_id} not found (nothing updated)')
            row.date = date
            sess.add(row)
            await sess.commit()

    async def delete_task(self, task_id: int) -> None:
        async with self.async_session() as sess:
            row = await sess.get(Task, task_id)
            if not row:
                raise TaskNotFound(f'task with id={task_id} not found (nothing deleted)')
            await sess.delete(row)
            await sess.commit()
