"""Table definitions: processing ledger and reference vocabulary.

``processing_results.word_id`` is a plain integer rather than a foreign key:
a word row can be merged away by the upsert while the ledger keeps the id it
was processed under.

Tags:
    orm, sqlalchemy, tables
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from categorizer.core.orm.base import CategorizerBase, utcnow


class ProcessingSessionTable(CategorizerBase):
    __tablename__ = "processing_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False, index=True)

    # --- counters ---
    total_words: Mapped[int] = mapped_column(default=0, nullable=False)
    processed_words: Mapped[int] = mapped_column(default=0, nullable=False)
    successful_words: Mapped[int] = mapped_column(default=0, nullable=False)
    failed_words: Mapped[int] = mapped_column(default=0, nullable=False)
    current_chunk: Mapped[int] = mapped_column(default=0, nullable=False)
    total_chunks: Mapped[int] = mapped_column(default=0, nullable=False)
    total_tokens_used: Mapped[int] = mapped_column(default=0, nullable=False)
    estimated_cost: Mapped[float] = mapped_column(default=0.0, nullable=False)

    # --- config snapshot ---
    mode: Mapped[str] = mapped_column(String(16), default="sequential", nullable=False)
    model: Mapped[str] = mapped_column(String(64), default="gpt-4o-mini", nullable=False)
    chunk_size: Mapped[int] = mapped_column(default=10, nullable=False)
    max_retries: Mapped[int] = mapped_column(default=3, nullable=False)
    language_prompt: Mapped[str | None] = mapped_column(Text)
    category_prompt: Mapped[str | None] = mapped_column(Text)

    # --- resume cursor ---
    last_processed_word_id: Mapped[int | None] = mapped_column(Integer)
    resume_data: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # --- timestamps ---
    created_at: Mapped[datetime.datetime] = mapped_column(default=utcnow, nullable=False)
    started_at: Mapped[datetime.datetime | None] = mapped_column()
    completed_at: Mapped[datetime.datetime | None] = mapped_column()
    last_processed_at: Mapped[datetime.datetime | None] = mapped_column()

    # --- bookkeeping ---
    error: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(default=0, nullable=False)

    # --- driver lease ---
    driver_id: Mapped[str | None] = mapped_column(String(32))
    heartbeat_at: Mapped[datetime.datetime | None] = mapped_column()

    results: Mapped[list[ProcessingResultTable]] = relationship(
        "ProcessingResultTable",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ProcessingResultTable(CategorizerBase):
    __tablename__ = "processing_results"
    __table_args__ = (Index("ix_processing_results_session_word", "session_id", "word_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("processing_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    word_id: Mapped[int] = mapped_column(nullable=False)
    original_word: Mapped[str] = mapped_column(Text, nullable=False)
    detected_language: Mapped[str | None] = mapped_column(Text)
    english_translation: Mapped[str | None] = mapped_column(Text)
    assigned_category: Mapped[str | None] = mapped_column(Text)
    success: Mapped[bool] = mapped_column(default=False, nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    processing_time: Mapped[int] = mapped_column(default=0, nullable=False)
    tokens_used: Mapped[int] = mapped_column(default=0, nullable=False)
    cost: Mapped[float] = mapped_column(default=0.0, nullable=False)
    processed_at: Mapped[datetime.datetime] = mapped_column(default=utcnow, nullable=False)

    session: Mapped[ProcessingSessionTable] = relationship(
        "ProcessingSessionTable", back_populates="results"
    )


class LanguageTable(CategorizerBase):
    __tablename__ = "languages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    code: Mapped[str | None] = mapped_column(String(16))
    priority: Mapped[int] = mapped_column(default=0, nullable=False)


class CategoryTable(CategorizerBase):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)


class WordTable(CategorizerBase):
    __tablename__ = "words"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    word: Mapped[str] = mapped_column(String(255), nullable=False)
    language_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("languages.id", ondelete="SET NULL")
    )
    english_translation: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(default=utcnow, nullable=False)

    language: Mapped[LanguageTable | None] = relationship("LanguageTable")


# NULL language counts as one value, so ("hola", NULL) can exist only once
Index(
    "uq_words_word_language",
    WordTable.__table__.c.word,
    func.coalesce(WordTable.__table__.c.language_id, 0),
    unique=True,
)
