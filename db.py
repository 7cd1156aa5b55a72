import os
from datetime import datetime

from sqlalchemy import create_engine, Column, Integer, String
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class PracticeRun(Base):
    """One finished reading practice session."""

    __tablename__ = "practice_runs"
    id           = Column(Integer, primary_key=True)
    timestamp    = Column(String,  nullable=False)
    mode         = Column(String,  nullable=False)
    stage_filter = Column(String,  nullable=False, default="all")
    total        = Column(Integer, nullable=False, default=0)
    correct      = Column(Integer, nullable=False, default=0)
    incorrect    = Column(Integer, nullable=False, default=0)

    @property
    def accuracy(self) -> int:
        if not self.total:
            return 0
        return int(100.0 * self.correct / self.total + 0.5)


def get_engine(db_path: str = "practice.db"):
    if db_path == ":memory:":
        return create_engine("sqlite://", echo=False)
    full = os.path.abspath(db_path)
    return create_engine(f"sqlite:///{full}", echo=False)


def init_db(engine=None):
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)


def get_session(db_path: str = "practice.db"):
    engine = get_engine(db_path)
    init_db(engine)
    return sessionmaker(bind=engine)()


def get_all_runs(db):
    return (
        db.query(PracticeRun)
        .order_by(PracticeRun.timestamp.desc(), PracticeRun.id.desc())
        .all()
    )


def get_run_by_id(db, run_id: int):
    return db.get(PracticeRun, run_id)


def add_run(
    db,
    mode: str,
    stage_filter: str,
    total: int,
    correct: int,
    incorrect: int,
):
    ts = datetime.now().isoformat(timespec="seconds")
    run = PracticeRun(
        timestamp=ts,
        mode=mode,
        stage_filter=stage_filter,
        total=total,
        correct=correct,
        incorrect=incorrect,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def delete_run(db, run_id: int):
    run = db.get(PracticeRun, run_id)
    if not run:
        return
    db.delete(run)
    db.commit()
