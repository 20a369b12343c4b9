from fastapi import FastAPI, APIRouter, HTTPException, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import logging
import os
import re
import sys

from . import config
from .auth import TOKEN_COOKIE, check_password, create_access_token, get_settings, require_auth
from .config import Settings
from .db import TaskNotFound, TaskStore
from .models import SignInInput, SignInResponse, Task, serialize_task
from .recurrence import DATE_FORMAT, InvalidDateFormat, RecurrenceError, next_date, normalize_date, parse_date, parse_rule

logger = logging.getLogger(__name__)
# Ensure INFO-level messages appear on the server console when no handlers
# are configured.
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)

SEARCH_DATE_FORMAT = '%d.%m.%Y'

_ID_RE = re.compile(r'[+-]?[0-9]+')
# SQLite INTEGER is a signed 64-bit value
MAX_TASK_ID = 2 ** 63 - 1


def get_store(request: Request) -> TaskStore:
    return request.app.state.store


def get_now() -> datetime:
    """Reference instant for recurrence; overridden in tests."""
    return datetime.now()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'error': message})


async def _read_task_payload(request: Request) -> dict:
    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail='invalid JSON')
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail='invalid JSON')
    out = {}
    for key in ('id', 'date', 'title', 'comment', 'repeat'):
        val = payload.get(key)
        if val is None:
            out[key] = ''
        elif key == 'id' and isinstance(val, int) and not isinstance(val, bool):
            out[key] = str(val)
        elif isinstance(val, str):
            out[key] = val
        else:
            raise HTTPException(status_code=400, detail='invalid JSON')
    return out


def _parse_task_id(raw: Optional[str]) -> int:
    if not raw:
        raise HTTPException(status_code=400, detail='id not specified')
    if not _ID_RE.fullmatch(raw):
        raise HTTPException(status_code=400, detail='id must be an integer')
    task_id = int(raw)
    if task_id < 1 or task_id > MAX_TASK_ID:
        raise TaskNotFound(f'task with id={raw} not found')
    return task_id


router = APIRouter(prefix='/api')


@router.get('/nextdate', response_class=PlainTextResponse)
async def next_date_handler(
    now: Optional[str] = Query(None),
    dstart: Optional[str] = Query(None, alias='date'),
    repeat: Optional[str] = Query(None),
    clock_now: datetime = Depends(get_now),
):
    """Return the next occurrence for ``date``/``repeat`` as plain text.

    ``now`` is an optional YYYYMMDD override of the reference date.
    """
    if not dstart or not repeat:
        logger.warning('nextdate: missing date or repeat')
        raise HTTPException(status_code=400, detail='date and repeat are required')
    ref = clock_now
    if now:
        try:
            ref = parse_date(now)
        except InvalidDateFormat:
            logger.warning('nextdate: invalid now parameter %s', now)
            raise HTTPException(status_code=400, detail='invalid now format')
    nxt = next_date(ref, dstart, repeat)
    logger.debug('nextdate: %s -> %s with rule %s', dstart, nxt, repeat)
    return PlainTextResponse(nxt)


@router.post('/signin')
async def sign_in(req: SignInInput, request: Request, settings: Settings = Depends(get_settings)):
    client = request.client.host if request.client else '?'
    if not settings.auth_enabled:
        logger.error('signin attempted but TODO_PASSWORD is not set')
        raise HTTPException(status_code=500, detail='authentication not configured')
    if not check_password(settings, req.password):
        logger.warning('failed signin attempt from %s', client)
        raise HTTPException(status_code=401, detail='invalid password')
    token, expire = create_access_token(settings)
    logger.info('signin succeeded from %s', client)
    resp = JSONResponse(content=SignInResponse(token=token).model_dump())
    resp.set_cookie(TOKEN_COOKIE, token, expires=expire, httponly=True, path='/')
    return resp


@router.post('/task', dependencies=[Depends(require_auth)])
async def add_task(request: Request, store: TaskStore = Depends(get_store), now: datetime = Depends(get_now)):
    data = await _read_task_payload(request)
    if not data['title']:
        raise HTTPException(status_code=400, detail='the title is empty')
    date = normalize_date(data['date'], data['repeat'], now.date(), now)
    if data['repeat']:
        # reject bad rules even when the date needed no advancing
        parse_rule(data['repeat'])
    task = Task(date=date, title=data['title'], comment=data['comment'], repeat=data['repeat'])
    try:
        task_id = await store.add_task(task)
    except SQLAlchemyError:
        logger.exception('failed to save task %r', data['title'])
        raise HTTPException(status_code=500, detail='saving error')
    logger.info('task created id=%s title=%s date=%s', task_id, task.title, date)
    return {'id': str(task_id)}


@router.get('/tasks', dependencies=[Depends(require_auth)])
async def list_tasks(
    search: str = '',
    store: TaskStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Upcoming tasks ordered by date; ``search`` is a DD.MM.YYYY date or a
    substring of the title or comment."""
    limit = settings.tasks_limit
    if not search:
        tasks = await store.get_tasks(limit)
    else:
        try:
            day = datetime.strptime(search, SEARCH_DATE_FORMAT)
        except ValueError:
            tasks = await store.get_tasks_by_title(limit, search)
        else:
            tasks = await store.get_tasks_by_date(limit, day.strftime(DATE_FORMAT))
    logger.info('retrieved %d tasks for search %r', len(tasks), search)
    return {'tasks': [serialize_task(t) for t in tasks]}


@router.get('/task', dependencies=[Depends(require_auth)])
async def get_task(id: Optional[str] = None, store: TaskStore = Depends(get_store)):
    task = await store.get_task(_parse_task_id(id))
    return serialize_task(task)


@router.put('/task', dependencies=[Depends(require_auth)])
async def update_task(request: Request, store: TaskStore = Depends(get_store), now: datetime = Depends(get_now)):
    data = await _read_task_payload(request)
    if not data['id']:
        raise HTTPException(status_code=400, detail='id is required')
    task_id = _parse_task_id(data['id'])
    if not data['title']:
        raise HTTPException(status_code=400, detail='the title is empty')
    date = normalize_date(data['date'], data['repeat'], now.date(), now)
    if data['repeat']:
        parse_rule(data['repeat'])
    task = Task(id=task_id, date=date, title=data['title'], comment=data['comment'], repeat=data['repeat'])
    await store.update_task(task)
    logger.info('task updated id=%s title=%s', task_id, task.title)
    return {}


@router.post('/task/done', dependencies=[Depends(require_auth)])
async def done_task(id: Optional[str] = None, store: TaskStore = Depends(get_store), now: datetime = Depends(get_now)):
    """Complete a task: one-shot tasks are deleted, repeating tasks move to
    their next occurrence after now."""
    task_id = _parse_task_id(id)
    task = await store.get_task(task_id)
    if not task.repeat:
        await store.delete_task(task_id)
        logger.info('one-time task completed and deleted id=%s', task_id)
        return {}
    nxt = next_date(now, task.date, task.repeat)
    await store.update_task_date(task_id, nxt)
    logger.info('recurring task completed id=%s next=%s rule=%s', task_id, nxt, task.repeat)
    return {}


@router.delete('/task', dependencies=[Depends(require_auth)])
async def delete_task(id: Optional[str] = None, store: TaskStore = Depends(get_store)):
    task_id = _parse_task_id(id)
    await store.delete_task(task_id)
    logger.info('task deleted id=%s', task_id)
    return {}


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        logger.warning('invalid request body for %s: %s', request.url.path, exc.errors())
        return _error(400, 'invalid JSON')

    @app.exception_handler(RecurrenceError)
    async def _recurrence_error(request: Request, exc: RecurrenceError):
        logger.warning('%s %s: %s', request.method, request.url.path, exc)
        return _error(400, str(exc))

    @app.exception_handler(TaskNotFound)
    async def _not_found(request: Request, exc: TaskNotFound):
        logger.warning('%s', exc)
        return _error(404, 'task not found')

    @app.exception_handler(SQLAlchemyError)
    async def _db_error(request: Request, exc: SQLAlchemyError):
        logger.error('database error on %s %s', request.method, request.url.path, exc_info=exc)
        return _error(500, 'internal server error')


def create_app(settings: Optional[Settings] = None, store: Optional[TaskStore] = None) -> FastAPI:
    """Build the application around an explicit settings object and store."""
    settings = settings or config.settings
    store = store or TaskStore(settings.database_url)
    logger.setLevel(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.init()
        logger.info('starting server using DATABASE_URL=%s auth=%s', settings.database_url, settings.auth_enabled)
        try:
            yield
        finally:
            await store.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    _install_error_handlers(app)
    app.include_router(router)

    # front-end assets; mounted last so /api routes match first
    if os.path.isdir(settings.web_dir):
        app.mount('/', StaticFiles(directory=settings.web_dir, html=True), name='web')
    else:
        logger.info('web directory %s not found; serving API only', settings.web_dir)
    return app


app = create_app()
