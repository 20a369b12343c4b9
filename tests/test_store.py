import pytest

from todo_scheduler.db import TaskNotFound
from todo_scheduler.models import Task, serialize_task

pytestmark = pytest.mark.asyncio


async def test_add_and_get(store):
    task_id = await store.add_task(Task(date='20240601', title='first', comment='', repeat='d 1'))
    got = await store.get_task(task_id)
    assert serialize_task(got) == {'id': str(task_id), 'date': '20240601', 'title': 'first', 'comment': '', 'repeat': 'd 1'}


async def test_missing_rows_raise_not_found(store):
    with pytest.raises(TaskNotFound):
        await store.get_task(1)
    with pytest.raises(TaskNotFound):
        await store.update_task(Task(id=1, date='20240601', title='x'))
    with pytest.raises(TaskNotFound):
        await store.update_task_date(1, '20240601')
    with pytest.raises(TaskNotFound):
        await store.delete_task(1)


async def test_update_task_date_only_touches_date(store):
    task_id = await store.add_task(Task(date='20240601', title='keep', comment='me', repeat='y'))
    await store.update_task_date(task_id, '20250601')
    got = await store.get_task(task_id)
    assert (got.date, got.title, got.comment, got.repeat) == ('20250601', 'keep', 'me', 'y')


async def test_queries_honour_limit_and_order(store):
    for d in ['20240603', '20240601', '20240602', '20240601']:
        await store.add_task(Task(date=d, title=f'on {d}'))
    tasks = await store.get_tasks(3)
    assert [t.date for t in tasks] == ['20240601', '20240601', '20240602']
    by_date = await store.get_tasks_by_date(10, '20240601')
    assert len(by_date) == 2
    by_title = await store.get_tasks_by_title(1, 'on 2024')
    assert len(by_title) == 1


async def test_delete(store):
    task_id = await store.add_task(Task(date='20240601', title='gone'))
    await store.delete_task(task_id)
    with pytest.raises(TaskNotFound):
        await store.get_task(task_id)
