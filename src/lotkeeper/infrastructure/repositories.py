# File: src/lotkeeper/infrastructure/repositories.py
"""
State Store Implementation for the Lot Allocation Engine

The allocation coordinator owns one LotState and persists it through a
StateStore after every committed change. Stores expose a collection-free
interface: ``load()`` returns a whole LotState and ``save(state)`` writes one.

Storage Implementations:
- InMemoryStateStore - For testing and development
- JsonFileStateStore - Single JSON document on disk, atomically replaced
- SQLAlchemyStateStore - Relational databases (parking_area / car_register tables)
- MongoStateStore - Document database (parking_area / car_register collections)

Every store checks slot/ledger consistency on load and refuses to hand out a
state where occupied slots and parked records disagree. Saves are guarded by
the lot version: a writer whose state is older than the stored one gets
StaleStateError instead of overwriting the newer state.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Callable
from contextlib import contextmanager
from pathlib import Path
import logging
import fcntl
import json
import os
import tempfile
import threading

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
import pymongo
from pymongo.errors import PyMongoError, DuplicateKeyError

from ..domain.aggregates import LotState
from ..domain.models import Slot, VehicleRecord, VehicleSize, RecordStatus
from ..domain.errors import PersistenceError, CorruptStateError, StaleStateError
from ..config import Settings


EMPTY_VERSION = 1
LOT_KEY = "lot"


# ============================================================================
# STORE INTERFACE
# ============================================================================

class StateStore(ABC):
    """
    Persistence interface for a whole LotState

    ``save`` takes the version the caller's state was loaded at. When the
    stored version differs, another writer committed in between and the save
    is refused with StaleStateError. ``expected_version=None`` writes
    unconditionally.
    """

    def __init__(self):
        self._logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def load(self) -> LotState:
        """Load the persisted state, or an empty state if nothing is stored"""
        pass

    @abstractmethod
    def save(self, state: LotState, expected_version: Optional[int] = None) -> None:
        """Persist the state synchronously"""
        pass

    def close(self) -> None:
        """Release connections held by the store"""
        pass

    def _checked(self, state: LotState) -> LotState:
        state.verify_consistency()
        self._logger.debug(f"Loaded {state!r}")
        return state

    def _check_version(self, expected_version: Optional[int], stored_version: Optional[int]) -> None:
        """An empty store counts as version 1, the version of a fresh LotState"""
        if expected_version is None:
            return
        stored = EMPTY_VERSION if stored_version is None else stored_version
        if stored != expected_version:
            self._logger.warning(f"Refusing save: expected version {expected_version}, stored {stored}")
            raise StaleStateError(expected_version, stored)


# ============================================================================
# IN-MEMORY STORE (For Testing)
# ============================================================================

class InMemoryStateStore(StateStore):
    """Keeps a private serialized copy of the last saved state"""

    def __init__(self, initial: Optional[LotState] = None):
        super().__init__()
        self._data: Optional[Dict[str, Any]] = initial.to_dict() if initial else None
        self._lock = threading.Lock()
        self.save_count = 0

    def load(self) -> LotState:
        with self._lock:
            data = self._data
        if data is None:
            return LotState()
        return self._checked(LotState.from_dict(data))

    def save(self, state: LotState, expected_version: Optional[int] = None) -> None:
        with self._lock:
            self._check_version(expected_version, self._data["version"] if self._data else None)
            self._data = state.to_dict()
            self.save_count += 1

    def clear(self) -> None:
        """Clear all data (for testing)"""
        with self._lock:
            self._data = None


# ============================================================================
# JSON FILE STORE
# ============================================================================

@contextmanager
def exclusive_file_lock(path: Path):
    """Hold an exclusive flock on a sidecar ``<path>.lock`` file"""
    lock_path = str(path) + ".lock"
    lock_fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(lock_fd, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(lock_fd, fcntl.LOCK_UN)
        os.close(lock_fd)


class JsonFileStateStore(StateStore):
    """
    One JSON document holding both the parking area and the car register

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash leaves either the old or the new document. The
    version check and the replace happen under one file lock.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)

    def load(self) -> LotState:
        data = self._read()
        if data is None:
            self._logger.info(f"No data file at {self.path}, starting with an empty lot")
            return LotState()
        return self._checked(LotState.from_dict(data))

    def save(self, state: LotState, expected_version: Optional[int] = None) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with exclusive_file_lock(self.path):
                if expected_version is not None:
                    stored = self._read()
                    self._check_version(expected_version, stored.get("version") if stored else None)
                self._write(state)
        except OSError as e:
            self._logger.error(f"Error saving state to {self.path}: {e}")
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise CorruptStateError(f"Data file {self.path} is not valid JSON: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e

    def _write(self, state: LotState) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(state.to_dict(), handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class ParkingAreaModel(Base):
    __tablename__ = "parking_area"

    slot_number = Column(Integer, primary_key=True, autoincrement=False)
    slot_available = Column(Boolean, nullable=False, default=True)
    active = Column(Boolean, nullable=False, default=True)
    update_date = Column(DateTime, nullable=False)


class CarRegisterModel(Base):
    __tablename__ = "car_register"

    id = Column(String(36), primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    plate_number = Column(String(64), nullable=False, index=True)
    car_size = Column(String(16), nullable=False)
    slot_number = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False, default=RecordStatus.UNSET.value)
    create_date = Column(DateTime, nullable=False)
    update_date = Column(DateTime, nullable=False)


class LotMetaModel(Base):
    """Single row keyed by LOT_KEY; its version guards concurrent saves"""
    __tablename__ = "lot_meta"

    key = Column(String(16), primary_key=True, default=LOT_KEY)
    lot_id = Column(String(36), nullable=False)
    version = Column(Integer, nullable=False, default=1)


# ============================================================================
# DOMAIN <-> ORM MAPPERS
# ============================================================================

class Mapper:
    """Maps between domain entities and ORM models"""

    @staticmethod
    def slot_to_orm(slot: Slot) -> ParkingAreaModel:
        return ParkingAreaModel(
            slot_number=slot.number,
            slot_available=slot.available,
            active=slot.active,
            update_date=slot.updated_at
        )

    @staticmethod
    def slot_to_domain(model: ParkingAreaModel) -> Slot:
        return Slot(
            number=model.slot_number,
            available=model.slot_available,
            active=model.active,
            updated_at=model.update_date
        )

    @staticmethod
    def record_to_orm(record: VehicleRecord, position: int) -> CarRegisterModel:
        return CarRegisterModel(
            id=record.id,
            position=position,
            plate_number=record.plate,
            car_size=record.size.value,
            slot_number=record.slot_number,
            status=record.status.value,
            create_date=record.created_at,
            update_date=record.updated_at
        )

    @staticmethod
    def record_to_domain(model: CarRegisterModel) -> VehicleRecord:
        return VehicleRecord(
            id=model.id,
            plate=model.plate_number,
            size=VehicleSize(model.car_size),
            slot_number=model.slot_number,
            status=RecordStatus(model.status),
            created_at=model.create_date,
            updated_at=model.update_date
        )


# ============================================================================
# SQLALCHEMY STORE
# ============================================================================

class SQLAlchemyStateStore(StateStore):
    """Relational store; each save replaces both tables in one transaction"""

    def __init__(self, session_factory: Callable[[], Session], engine=None):
        super().__init__()
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> 'SQLAlchemyStateStore':
        """Create the store and its tables for a database URL"""
        engine = create_engine(database_url, echo=False)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        # Create tables if they don't exist
        Base.metadata.create_all(bind=engine)

        return cls(SessionLocal, engine=engine)

    def load(self) -> LotState:
        session = self.session_factory()
        try:
            slots = [Mapper.slot_to_domain(m) for m in
                     session.query(ParkingAreaModel).order_by(ParkingAreaModel.slot_number).all()]
            records = [Mapper.record_to_domain(m) for m in
                       session.query(CarRegisterModel).order_by(CarRegisterModel.position).all()]
            meta = session.query(LotMetaModel).filter(LotMetaModel.key == LOT_KEY).first()
        except SQLAlchemyError as e:
            self._logger.error(f"Database error loading state: {e}")
            raise PersistenceError(f"Cannot load lot state: {e}") from e
        except ValueError as e:
            raise CorruptStateError(f"Stored rows cannot be decoded: {e}") from e
        finally:
            session.close()

        state = LotState(
            slots=slots,
            records=records,
            version=meta.version if meta else EMPTY_VERSION,
            id=meta.lot_id if meta else None
        )
        return self._checked(state)

    def save(self, state: LotState, expected_version: Optional[int] = None) -> None:
        session = self.session_factory()
        try:
            # Claim the version first; a concurrent writer blocks or fails here
            self._claim_version(session, state, expected_version)
            # Slots first, then records, inside the same transaction
            session.query(ParkingAreaModel).delete()
            session.add_all(Mapper.slot_to_orm(s) for s in state.slots.values())
            session.query(CarRegisterModel).delete()
            session.add_all(Mapper.record_to_orm(r, i) for i, r in enumerate(state.records))
            session.commit()
            self._logger.debug(f"Saved {state!r}")
        except StaleStateError:
            session.rollback()
            raise
        except IntegrityError as e:
            session.rollback()
            self._logger.warning(f"Concurrent first save of lot_meta: {e}")
            raise StaleStateError(expected_version, None) from e
        except SQLAlchemyError as e:
            session.rollback()
            self._logger.error(f"Database error saving state: {e}")
            raise PersistenceError(f"Cannot save lot state: {e}") from e
        finally:
            session.close()

    def _claim_version(self, session: Session, state: LotState, expected_version: Optional[int]) -> None:
        """Move the lot_meta row from expected_version to the state's version"""
        if expected_version is None:
            session.merge(LotMetaModel(key=LOT_KEY, lot_id=state.id, version=state.version))
            return

        meta = session.query(LotMetaModel).filter(LotMetaModel.key == LOT_KEY)
        updated = meta.filter(LotMetaModel.version == expected_version).update(
            {LotMetaModel.lot_id: state.id, LotMetaModel.version: state.version},
            synchronize_session=False
        )
        if updated:
            return

        current = meta.first()
        if current is not None:
            raise StaleStateError(expected_version, current.version)
        self._check_version(expected_version, None)
        session.add(LotMetaModel(key=LOT_KEY, lot_id=state.id, version=state.version))
        session.flush()

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


# ============================================================================
# MONGODB STORE
# ============================================================================

class MongoStateStore(StateStore):
    """
    Document store with parking_area and car_register collections

    A save first moves the lot_meta document from the expected version to
    the new one with a conditional replace, then writes slots before
    records, matching the order of a park transaction. A crash between the
    writes leaves an inconsistent pair which load() detects and rejects.
    """

    PARKING_AREA = "parking_area"
    CAR_REGISTER = "car_register"
    LOT_META = "lot_meta"

    def __init__(self, client: pymongo.MongoClient, db_name: str = "admin"):
        super().__init__()
        self.client = client
        self.db = client[db_name]

    @classmethod
    def from_uri(cls, uri: str, db_name: str = "admin") -> 'MongoStateStore':
        client = pymongo.MongoClient(uri)
        try:
            client[db_name].command("ping")
        except PyMongoError as e:
            raise PersistenceError(f"Failed to connect to MongoDB: {e}") from e
        return cls(client, db_name)

    def load(self) -> LotState:
        try:
            slots = list(self.db[self.PARKING_AREA].find({}, {"_id": 0}).sort("slot_number", pymongo.ASCENDING))
            records = list(self.db[self.CAR_REGISTER].find({}, {"_id": 0}).sort("position", pymongo.ASCENDING))
            meta = self.db[self.LOT_META].find_one({"_id": LOT_KEY}, {"_id": 0}) or {}
        except PyMongoError as e:
            self._logger.error(f"MongoDB error loading state: {e}")
            raise PersistenceError(f"Cannot load lot state: {e}") from e

        for record in records:
            record.pop("position", None)
        state = LotState.from_dict({
            "id": meta.get("id"),
            "version": meta.get("version", EMPTY_VERSION),
            "parking_area": slots,
            "car_register": records,
        })
        return self._checked(state)

    def save(self, state: LotState, expected_version: Optional[int] = None) -> None:
        data = state.to_dict()
        try:
            self._claim_version(data, expected_version)
            self._replace_all(self.PARKING_AREA, "slot_number", data["parking_area"])
            self._replace_all(
                self.CAR_REGISTER, "id",
                [dict(doc, position=i) for i, doc in enumerate(data["car_register"])]
            )
        except PyMongoError as e:
            self._logger.error(f"MongoDB error saving state: {e}")
            raise PersistenceError(f"Cannot save lot state: {e}") from e

    def _claim_version(self, data: Dict[str, Any], expected_version: Optional[int]) -> None:
        """Conditionally move the lot_meta document to the new version"""
        meta = self.db[self.LOT_META]
        document = {"_id": LOT_KEY, "id": data["id"], "version": data["version"]}
        if expected_version is None:
            meta.replace_one({"_id": LOT_KEY}, document, upsert=True)
            return

        result = meta.replace_one({"_id": LOT_KEY, "version": expected_version}, document)
        if result.matched_count:
            return

        current = meta.find_one({"_id": LOT_KEY})
        if current is not None:
            raise StaleStateError(expected_version, current.get("version"))
        self._check_version(expected_version, None)
        try:
            meta.insert_one(document)
        except DuplicateKeyError as e:
            raise StaleStateError(expected_version, None) from e

    def _replace_all(self, collection_name: str, key: str, documents: List[Dict[str, Any]]) -> None:
        collection = self.db[collection_name]
        for doc in documents:
            collection.replace_one({key: doc[key]}, doc, upsert=True)
        collection.delete_many({key: {"$nin": [doc[key] for doc in documents]}})

    def close(self) -> None:
        self.client.close()


# ============================================================================
# STORE FACTORY
# ============================================================================

class StateStoreFactory:
    """Factory for creating state stores from settings"""

    @staticmethod
    def create(settings: Settings) -> StateStore:
        backend = settings.store_backend
        if backend == "memory":
            return InMemoryStateStore()
        if backend == "json":
            return JsonFileStateStore(settings.data_file)
        if backend == "sql":
            return SQLAlchemyStateStore.from_url(settings.database_url)
        if backend == "mongo":
            if not settings.mongodb_uri:
                raise PersistenceError("MONGODB_URI is required for the mongo store")
            return MongoStateStore.from_uri(settings.mongodb_uri, settings.mongodb_db_name)
        raise ValueError(f"Unknown store backend: {backend}")
