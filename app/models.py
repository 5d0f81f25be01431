import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Float, Text, JSON, Boolean
from sqlalchemy.orm import relationship

from app.database import Base


def generate_uuid():
    return str(uuid.uuid4())


def utc_now():
    return datetime.now(timezone.utc)


class Account(Base):
    """
    Credit balance for a user.

    The id is the stable user identifier issued by the auth provider. The
    balance is only ever changed through LedgerService.adjust_balance, which
    issues a server-side `credits = credits + delta` update. A negative value
    is possible when concurrent generations race past the balance check.
    """
    __tablename__ = "accounts"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True, index=True)
    credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)

    artifacts = relationship("Artifact", back_populates="account")
    subscriptions = relationship("Subscription", back_populates="account")
    transactions = relationship("Transaction", back_populates="account")


class Artifact(Base):
    """
    A generated or edited image.

    Exactly one row exists per charged dispatch. `credits_charged` records the
    debit that followed persistence of this row.
    """
    __tablename__ = "artifacts"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    model_id = Column(String, nullable=False, index=True)
    aspect_ratio = Column(String, nullable=True)

    # Storage
    storage_path = Column(String, nullable=False)  # images/{user_id}/{file_name}
    file_name = Column(String, nullable=False)
    public_url = Column(String, nullable=False)
    mime_type = Column(String, nullable=False, default="image/png")

    tags = Column(JSON, nullable=True, default=list)
    edited_from_id = Column(String, ForeignKey("artifacts.id", ondelete="SET NULL"), nullable=True, index=True)
    credits_charged = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    account = relationship("Account", back_populates="artifacts")
    edited_from = relationship("Artifact", remote_side=[id])


class Subscription(Base):
    """
    Local mirror of a payment-processor subscription.

    A user can accumulate several rows over time (lapse and restart). The most
    recently created row is the current one. `status` is copied verbatim from
    the processor (active, canceled, incomplete, past_due, ...).
    """
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    stripe_subscription_id = Column(String, nullable=False, unique=True, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="active")

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    cancel_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now)

    account = relationship("Account", back_populates="subscriptions")


class Transaction(Base):
    """
    Append-only audit trail of credit grants and subscription actions.

    `idempotency_key` holds the processor session or invoice id for credits
    granted from webhooks. It is unique, so a redelivered event can never add
    a second row (and with it, a second credit). Manual repairs and
    cancellations leave it NULL.
    """
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)  # see TRANSACTION_TYPES
    credits = Column(Integer, nullable=False, default=0)
    amount = Column(Float, nullable=True)  # USD
    status = Column(String, nullable=False, default="completed")

    idempotency_key = Column(String, nullable=True, unique=True)
    stripe_session_id = Column(String, nullable=True, index=True)
    stripe_invoice_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)

    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    account = relationship("Account", back_populates="transactions")


TRANSACTION_TYPES = (
    "credit_purchase",
    "subscription_initial",
    "subscription_renewal",
    "subscription_fix",
    "subscription_cancel",
    "admin_adjustment",
)
