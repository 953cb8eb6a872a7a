"""
Deployment record store — SQLAlchemy persistence for DeploymentRecords.

One row per deployment key. The full record is stored as a JSON payload;
stage and addresses are duplicated into columns so records can be listed
and filtered without decoding the payload. Saving an existing key replaces
its row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.types import JSON

from multisig_forge.config import settings
from multisig_forge.configuration.schema import DeploymentRecord, DeploymentStage

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for deployment tables."""
    pass


class DeploymentRecordDB(Base):
    """Latest known state of one system deployment."""

    __tablename__ = "deployment_records"

    key = Column(String(200), primary_key=True)
    stage = Column(
        String(32), nullable=False, index=True,
        comment="Last completed deployment stage",
    )
    multisig_address = Column(String(42), nullable=True)
    manager_address = Column(String(42), nullable=True)
    policy_address = Column(String(42), nullable=True)
    roles_address = Column(String(42), nullable=True)
    is_pending = Column(Boolean, nullable=False, default=False)
    payload = Column(
        JSON, nullable=False,
        comment="Full DeploymentRecord as JSON",
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class SqlRecordStore:
    """
    RecordStore backed by any SQLAlchemy database.

    Usage:
        store = SqlRecordStore("sqlite:///multisig_forge.db")
        store.initialize()
        store.save(record.key, record)
    """

    def __init__(self, database_url: str | None = None) -> None:
        self.engine = create_engine(database_url or settings.database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def initialize(self) -> None:
        """Create tables if missing."""
        Base.metadata.create_all(self.engine)

    def save(self, key: str, record: DeploymentRecord) -> None:
        payload = record.model_dump(mode="json")
        with self.SessionLocal() as session:
            row = session.get(DeploymentRecordDB, key)
            if row is None:
                row = DeploymentRecordDB(key=key)
                session.add(row)
            row.stage = record.stage.value
            row.multisig_address = record.multisig_address
            row.manager_address = record.manager_address
            row.policy_address = record.policy_address
            row.roles_address = record.roles_address
            row.is_pending = record.is_pending
            row.payload = payload
            row.updated_at = datetime.now(timezone.utc)
            session.commit()
        logger.debug("Saved deployment record %s at stage %s", key, record.stage.value)

    def load(self, key: str) -> DeploymentRecord | None:
        with self.SessionLocal() as session:
            row = session.get(DeploymentRecordDB, key)
            if row is None:
                return None
            return DeploymentRecord.model_validate(row.payload)

    def list_records(self, stage: DeploymentStage | None = None) -> list[DeploymentRecord]:
        """All records, optionally only those whose last completed stage is `stage`."""
        query = select(DeploymentRecordDB).order_by(DeploymentRecordDB.key)
        if stage is not None:
            query = query.where(DeploymentRecordDB.stage == stage.value)
        with self.SessionLocal() as session:
            rows = session.execute(query).scalars().all()
            return [DeploymentRecord.model_validate(r.payload) for r in rows]
