from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncConnection


Base = declarative_base()

# ticket type (wristband) statuses
TT_ACTIVE = "active"
TT_LOST = "lost"
TT_CANCELLED = "cancelled"
TICKET_TYPE_STATUSES = (TT_ACTIVE, TT_LOST, TT_CANCELLED)
WITHDRAWAL_STATUSES = (TT_LOST, TT_CANCELLED)

# inventory unit statuses
U_ACTIVE = "active"
U_RESERVED = "reserved"
U_USED = "used"
U_LOST = "lost"
U_CANCELLED = "cancelled"

# transaction statuses
TX_PENDING = "pending"
TX_PAID = "paid"
TX_FAILED = "failed"
TX_TERMINAL = (TX_PAID, TX_FAILED)


# ----------------------------
# Catalog & profile collaborator
# ----------------------------
class Company(Base):
    __tablename__ = "companies"
    id = Column(String(36), primary_key=True)
    name = Column(String, nullable=False)


class UserCompany(Base):
    __tablename__ = "user_companies"
    user_id = Column(String(36), primary_key=True)
    company_id = Column(
        String(36), ForeignKey("companies.id", ondelete="CASCADE"),
        primary_key=True,
    )
    # owner | manager | staff
    role = Column(String, nullable=False, default="manager")


class Event(Base):
    __tablename__ = "events"
    id = Column(String(36), primary_key=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=True)
    # the manager who created the event
    user_id = Column(String(36), nullable=False)
    title = Column(String, nullable=False, default="")


class PaymentSettings(Base):
    __tablename__ = "payment_settings"
    id = Column(String(36), primary_key=True)
    company_id = Column(
        String(36), ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    api_key = Column(String, nullable=True)
    api_token = Column(String, nullable=True)


# ----------------------------
# Core: ticket types, units, transactions
# ----------------------------
class TicketType(Base):
    __tablename__ = "wristbands"
    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_wristbands_code"),
        Index("ix_wristbands_event", "event_id", "company_id"),
    )
    id = Column(String(36), primary_key=True)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    manager_user_id = Column(String(36), nullable=False)
    code = Column(String, nullable=False)
    access_type = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    status = Column(String, nullable=False, default=TT_ACTIVE)
    created_at = Column(Float, nullable=False)


class InventoryUnit(Base):
    __tablename__ = "wristband_analytics"
    __table_args__ = (
        Index("ix_units_claimable", "wristband_id", "status"),
        Index("ix_units_transaction", "transaction_id"),
    )
    id = Column(String(36), primary_key=True)
    wristband_id = Column(
        String(36), ForeignKey("wristbands.id", ondelete="CASCADE"),
        nullable=False,
    )
    # active | reserved | used | lost | cancelled
    status = Column(String, nullable=False, default=U_ACTIVE)
    client_user_id = Column(String(36), nullable=True)
    # set while reserved, kept once used
    transaction_id = Column(String(36), nullable=True)
    sequential_number = Column(Integer, nullable=False)
    code_wristbands = Column(String, nullable=False)
    # creation | purchase
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class Transaction(Base):
    __tablename__ = "receivables"
    __table_args__ = (
        Index("ix_receivables_status_created", "status", "created_at"),
    )
    id = Column(String(36), primary_key=True)
    client_user_id = Column(String(36), nullable=False)
    manager_user_id = Column(String(36), nullable=False)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False)
    total_value = Column(Float, nullable=False)
    # pending | paid | failed
    status = Column(String, nullable=False, default=TX_PENDING)
    wristband_analytics_ids = Column(JSON, nullable=False, default=list)
    payment_gateway_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


async def create_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)
