from typing import Optional
from pydantic import BaseModel
from sqlmodel import SQLModel, Field


class Task(SQLModel, table=True):
    """A scheduled task. ``date`` is a YYYYMMDD string so it sorts as text."""
    __tablename__ = "scheduler"

    id: Optional[int] = Field(default=None, primary_key=True)
    date: str = Field(default="", max_length=8, index=True)
    title: str
    comment: str = Field(default="")
    # Repetition rule text, see todo_scheduler.recurrence
    repeat: str = Field(default="", max_length=128)


class SignInInput(BaseModel):
    password: str


class SignInResponse(BaseModel):
    token: str


def serialize_task(task: Task) -> dict:
    # ids travel as strings on the wire
    return {
        "id": str(task.id),
        "date": task.date,
        "title": task.title,
        "comment": task.comment or "",
        "repeat": task.repeat or "",
    }
