"""SQL metadata store for questions and recordings."""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import JSON, Column, DateTime, desc, func
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .config import DATABASE_URL


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class UTCTimestamp(TypeDecorator):
    """Stores timestamps as naive UTC and loads them back timezone-aware.

    SQLite has no timezone support, so the offset is normalised on the way in
    and re-attached on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Question(SQLModel, table=True):
    __tablename__ = "ielts_questions"

    id: str = Field(default_factory=_new_id, primary_key=True, index=True)
    serial_number: int = Field(unique=True, index=True)
    part: int
    category: str
    question: str
    sample_answer: str
    key_vocabulary: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    time_limit: int
    created_at: datetime = Field(default_factory=_now, sa_column=Column(UTCTimestamp(), nullable=False))


class UserRecording(SQLModel, table=True):
    __tablename__ = "user_recordings"

    id: str = Field(default_factory=_new_id, primary_key=True, index=True)
    question_id: str = Field(foreign_key="ielts_questions.id", index=True)
    audio_url: str
    duration: int
    created_at: datetime = Field(default_factory=_now, sa_column=Column(UTCTimestamp(), nullable=False))


class MetadataStore:
    """Thin CRUD layer over the SQL database."""

    def __init__(self, url: str = DATABASE_URL) -> None:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self._engine = create_engine(url, echo=False, connect_args=connect_args)
        SQLModel.metadata.create_all(self._engine)

    def session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    # ---------- Recordings ----------

    def insert_recording(self, *, question_id: str, audio_url: str, duration: int) -> UserRecording:
        """Store a recording row and return it with its generated id and timestamp."""
        rec = UserRecording(question_id=question_id, audio_url=audio_url, duration=duration)
        with self.session() as s:
            s.add(rec)
            s.commit()
            s.refresh(rec)
        return rec

    def recent_recordings(self, question_id: str, limit: int = 5) -> List[UserRecording]:
        with self.session() as s:
            stmt = (
                select(UserRecording)
                .where(UserRecording.question_id == question_id)
                .order_by(desc(UserRecording.created_at))
                .limit(limit)
            )
            return list(s.exec(stmt))

    # ---------- Questions ----------

    def add_questions(self, questions: List[Question]) -> List[Question]:
        with self.session() as s:
            s.add_all(questions)
            s.commit()
            for q in questions:
                s.refresh(q)
        return questions

    def list_questions(self) -> List[Question]:
        with self.session() as s:
            return list(s.exec(select(Question).order_by(Question.serial_number)))

    def get_question(self, serial_number: int) -> Optional[Question]:
        with self.session() as s:
            stmt = select(Question).where(Question.serial_number == serial_number)
            return s.exec(stmt).first()

    def update_question(
        self,
        serial_number: int,
        *,
        sample_answer: Optional[str] = None,
        key_vocabulary: Optional[Sequence[str]] = None,
    ) -> Optional[Question]:
        """Replace the sample answer and/or key vocabulary of a question.

        Returns:
            The updated question, or ``None`` if no question has that serial
        """
        with self.session() as s:
            question = s.exec(select(Question).where(Question.serial_number == serial_number)).first()
            if question is None:
                return None
            if sample_answer is not None:
                question.sample_answer = sample_answer
            if key_vocabulary is not None:
                question.key_vocabulary = list(key_vocabulary)
            s.add(question)
            s.commit()
            s.refresh(question)
            return question

    def delete_question(self, serial_number: int) -> bool:
        """Delete a question together with its recordings. Returns ``False`` if it does not exist."""
        with self.session() as s:
            question = s.exec(select(Question).where(Question.serial_number == serial_number)).first()
            if question is None:
                return False
            for rec in list(s.exec(select(UserRecording).where(UserRecording.question_id == question.id))):
                s.delete(rec)
            s.delete(question)
            s.commit()
        return True

    def next_serial_number(self) -> int:
        with self.session() as s:
            highest = s.exec(select(func.max(Question.serial_number))).one()
        return (highest or 0) + 1
