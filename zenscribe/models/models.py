import uuid
from enum import Enum

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Integer,
    String, Text, Uuid, func, Enum as SQLAEnum, UniqueConstraint
)
from sqlalchemy.orm import relationship

from zenscribe.db.base_class import Base


class UserRole(str, Enum):
    """User role enum"""
    ADMIN = "admin"
    DOCTOR = "doctor"


class SubscriptionTier(str, Enum):
    """Subscription plan names"""
    FREE = "free"
    BASIC = "basic"
    ADVANCED = "advanced"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Subscription period status"""
    ACTIVE = "active"
    CANCELED = "canceled"


class VisitType(str, Enum):
    """Consultation visit type"""
    PRIMA_VISITA = "prima_visita"
    VISITA_CONTROLLO = "visita_controllo"


class User(Base):
    """User model"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    role = Column(SQLAEnum(UserRole), default=UserRole.DOCTOR, nullable=False)
    subscription_tier = Column(SQLAEnum(SubscriptionTier), default=SubscriptionTier.FREE, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    patients = relationship("Patient", back_populates="owner", passive_deletes=True)
    subscriptions = relationship("UserSubscription", back_populates="user", passive_deletes=True)


class SubscriptionPlan(Base):
    """Plan with a monthly minute allowance; NULL minutes means unlimited"""
    __tablename__ = "subscription_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(SQLAEnum(SubscriptionTier), unique=True, nullable=False)
    monthly_minutes = Column(Integer, nullable=True)
    price_monthly = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class UserSubscription(Base):
    """Minute usage of one user within one billing period"""
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "current_period_start", name="uq_user_subscription_period"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Uuid, ForeignKey("subscription_plans.id"), nullable=False)
    status = Column(SQLAEnum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE, nullable=False)

    # Naive UTC period bounds, end exclusive
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)
    minutes_used = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")


class Patient(Base):
    """Patient model"""
    __tablename__ = "patients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    birth_date = Column(Date, nullable=False)
    gender = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("User", back_populates="patients")
    consultations = relationship(
        "Consultation", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )


class Consultation(Base):
    """Consultation with its transcript and structured report"""
    __tablename__ = "consultations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(DateTime(timezone=True), server_default=func.now())
    visit_type = Column(SQLAEnum(VisitType), default=VisitType.PRIMA_VISITA, nullable=False)
    gdpr_consent = Column(Boolean, default=False, nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    audio_url = Column(String, nullable=True)
    transcription = Column(Text, nullable=True)

    # Report sections, NULL when the analysis reported nothing
    motivo_visita = Column(Text, nullable=True)
    storia_medica = Column(Text, nullable=True)
    storia_ponderale = Column(Text, nullable=True)
    abitudini_alimentari = Column(Text, nullable=True)
    attivita_fisica = Column(Text, nullable=True)
    fattori_psi = Column(Text, nullable=True)
    esami_parametri = Column(Text, nullable=True)
    punti_critici = Column(Text, nullable=True)
    note_specialista = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    patient = relationship("Patient", back_populates="consultations")
