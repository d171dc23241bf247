from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from errors import ImmutabilityViolation

INITIAL_STATUS = "Harvested"


class RegistryState(Base):
    """Single row holding the identifier counter."""
    __tablename__ = "registry_state"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    counter: Mapped[int] = mapped_column(Integer, default=0)


class Batch(Base):
    __tablename__ = "batches"
    batch_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    crop_type: Mapped[str] = mapped_column(Text)
    origin_farm: Mapped[str] = mapped_column(Text)
    harvest_date: Mapped[int] = mapped_column(BigInteger)
    current_owner: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default=INITIAL_STATUS)
    events: Mapped[list["Event"]] = relationship(
        "Event", back_populates="batch", order_by="Event.seq"
    )


class Event(Base):
    __tablename__ = "events"
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    batch_id: Mapped[int] = mapped_column(Integer, ForeignKey("batches.batch_id"), index=True)
    kind: Mapped[str] = mapped_column(String(32))
    payload: Mapped[str] = mapped_column(Text)
    timestamp: Mapped[str] = mapped_column(String(40))
    prev_hash: Mapped[str] = mapped_column(String(128))
    hash: Mapped[str] = mapped_column(String(128))
    batch: Mapped[Batch] = relationship("Batch", back_populates="events")


# ---------- Append-only guards ----------
FIXED_BATCH_FIELDS = ("batch_id", "crop_type", "origin_farm", "harvest_date")


@event.listens_for(Event, "before_update")
def _reject_event_update(mapper, connection, target):
    raise ImmutabilityViolation(f"event {target.seq} is immutable")


@event.listens_for(Event, "before_delete")
def _reject_event_delete(mapper, connection, target):
    raise ImmutabilityViolation(f"event {target.seq} cannot be deleted")


@event.listens_for(Batch, "before_update")
def _reject_fixed_field_change(mapper, connection, target):
    state = inspect(target)
    for name in FIXED_BATCH_FIELDS:
        if state.attrs[name].history.has_changes():
            raise ImmutabilityViolation(f"batch {target.batch_id}: {name} is immutable")


@event.listens_for(Batch, "before_delete")
def _reject_batch_delete(mapper, connection, target):
    raise ImmutabilityViolation(f"batch {target.batch_id} cannot be deleted")
