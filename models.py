"""
Partner Wallet Ledger - SQLAlchemy Models
=========================================

Models for the wallet ledger consistency layer: partner hierarchy, wallet
accounts and their append-only ledger, the per-service business transaction
tables, reversals, commission schemes and the admin audit trail.

The models run unchanged on PostgreSQL (production) and SQLite
(development and tests).
"""
# /models.py

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
import json
import secrets
import uuid

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, Text, DECIMAL,
    Index, UniqueConstraint, CheckConstraint, text
)
from sqlalchemy.dialects.postgresql import UUID, INET
from sqlalchemy.types import TypeDecorator, VARCHAR


db = SQLAlchemy()

# =============================================================================
# CUSTOM TYPES FOR CROSS-DATABASE COMPATIBILITY
# =============================================================================

class GUID(TypeDecorator):
    """Platform-independent GUID type."""
    impl = VARCHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(VARCHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        if dialect.name == 'postgresql':
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSONType(TypeDecorator):
    """Platform-independent JSON type."""
    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            from sqlalchemy.dialects.postgresql import JSONB
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        return json.dumps(value, default=str)

    def process_result_value(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        return json.loads(value)


class IPAddressType(TypeDecorator):
    """Platform-independent IP address type."""
    impl = VARCHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(INET())
        return dialect.type_descriptor(VARCHAR(45))  # Supports IPv6

    def process_bind_param(self, value, dialect):
        if value in (None, '', 'unknown'):
            return None
        return str(value)

# =============================================================================
# ENUMS
# =============================================================================

class UserRoleType(PyEnum):
    """User role hierarchy for the platform"""
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MASTER_DISTRIBUTOR = "MASTER_DISTRIBUTOR"
    DISTRIBUTOR = "DISTRIBUTOR"
    RETAILER = "RETAILER"


class WalletType(PyEnum):
    PRIMARY = "primary"
    AEPS = "aeps"
    REVENUE = "revenue"


class LedgerTxType(PyEnum):
    """Wallet ledger entry types"""
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    COMMISSION = "COMMISSION"
    CHARGE = "CHARGE"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"
    SETTLEMENT = "SETTLEMENT"


class LedgerEntryStatus(PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BusinessTransactionStatus(PyEnum):
    """Status shared by BBPS, AEPS, settlement and POS transactions"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REVERSED = "reversed"


class ReversalTransactionType(PyEnum):
    BBPS = "bbps"
    AEPS = "aeps"
    SETTLEMENT = "settlement"
    ADMIN = "admin"
    POS = "pos"


class ReversalStatus(PyEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SchemeType(PyEnum):
    GLOBAL = "global"
    GOLDEN = "golden"
    CUSTOM = "custom"


class ServiceScope(PyEnum):
    ALL = "all"
    BBPS = "bbps"
    PAYOUT = "payout"
    MDR = "mdr"


class RecordStatus(PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ChargeType(PyEnum):
    """How a slab component is applied to the base amount"""
    FLAT = "flat"
    PERCENTAGE = "percentage"


class MappingEntityRole(PyEnum):
    MASTER_DISTRIBUTOR = "master_distributor"
    DISTRIBUTOR = "distributor"
    RETAILER = "retailer"


class FanoutDirection(PyEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class FanoutStatus(PyEnum):
    PENDING = "pending"
    POSTED = "posted"
    FAILED = "failed"


class AuditActionType(PyEnum):
    """Privileged mutations recorded in the admin audit log"""
    WALLET_PUSH = "wallet_push"
    WALLET_PULL = "wallet_pull"
    WALLET_FREEZE = "wallet_freeze"
    WALLET_UNFREEZE = "wallet_unfreeze"
    SETTLEMENT_HOLD = "settlement_hold"
    SETTLEMENT_RELEASE = "settlement_release"
    COMMISSION_LOCK = "commission_lock"
    COMMISSION_UNLOCK = "commission_unlock"
    LIMIT_OVERRIDE = "limit_override"
    LIMIT_UPDATE = "limit_update"
    TRANSACTION_REVERSE = "transaction_reverse"
    BBPS_FAILURE_REVERSAL = "bbps_failure_reversal"
    SETTLEMENT_FAILURE_REVERSAL = "settlement_failure_reversal"
    AEPS_FAILURE_REVERSAL = "aeps_failure_reversal"
    REVERSAL_RECONCILED = "reversal_reconciled"
    SCHEME_CREATE = "scheme_create"
    SCHEME_UPDATE = "scheme_update"
    SCHEME_DELETE = "scheme_delete"
    SCHEME_MAPPING_ASSIGN = "scheme_mapping_assign"
    SCHEME_MAPPING_REMOVE = "scheme_mapping_remove"
    SCHEME_SLAB_SAVE = "scheme_slab_save"
    SCHEME_SLAB_DELETE = "scheme_slab_delete"
    USER_ENABLE = "user_enable"
    USER_DISABLE = "user_disable"
    AEPS_ENABLE = "aeps_enable"
    AEPS_DISABLE = "aeps_disable"
    BBPS_SLAB_ENABLE = "bbps_slab_enable"
    BBPS_SLAB_DISABLE = "bbps_slab_disable"

# =============================================================================
# BASE MODEL CLASS WITH COMMON FIELDS
# =============================================================================

class BaseModel(db.Model):
    """Base model class with common fields and methods"""
    __abstract__ = True

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model instance to dictionary"""
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, datetime):
                result[column.name] = value.isoformat()
            elif isinstance(value, Decimal):
                result[column.name] = float(value)
            elif isinstance(value, uuid.UUID):
                result[column.name] = str(value)
            elif isinstance(value, PyEnum):
                result[column.name] = value.value
            else:
                result[column.name] = value
        return result

    def update_from_dict(self, data):
        """Update model instance from dictionary"""
        for key, value in data.items():
            if hasattr(self, key) and key not in ['id', 'created_at']:
                setattr(self, key, value)

# =============================================================================
# PARTNER HIERARCHY
# =============================================================================

class User(UserMixin, BaseModel):
    """Partner or administrator; parent_id links retailer -> distributor -> master distributor"""
    __tablename__ = 'users'

    parent_id = Column(GUID(), db.ForeignKey('users.id'), index=True)
    user_code = Column(String(50), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(db.Enum(UserRoleType), nullable=False, index=True)
    api_key = Column(String(255), unique=True, index=True)
    is_active = Column(Boolean, default=True, index=True)

    parent = db.relationship('User', remote_side='User.id', backref='children')

    LEDGER_ROLES = {
        UserRoleType.SUPER_ADMIN: 'admin',
        UserRoleType.ADMIN: 'admin',
        UserRoleType.MASTER_DISTRIBUTOR: 'master_distributor',
        UserRoleType.DISTRIBUTOR: 'distributor',
        UserRoleType.RETAILER: 'retailer',
    }

    def __repr__(self):
        return f"<User(code='{self.user_code}', role='{self.role.value if self.role else None}')>"

    def generate_api_key(self):
        self.api_key = secrets.token_urlsafe(32)
        return self.api_key

    @property
    def is_admin(self):
        return self.role in (UserRoleType.SUPER_ADMIN, UserRoleType.ADMIN)

    @property
    def ledger_role(self):
        return self.LEDGER_ROLES[self.role]

    def upline(self):
        """Return (distributor, master_distributor) above this user, either may be None"""
        distributor = None
        master_distributor = None
        node = self.parent
        while node is not None:
            if node.role == UserRoleType.DISTRIBUTOR and distributor is None:
                distributor = node
            elif node.role == UserRoleType.MASTER_DISTRIBUTOR:
                master_distributor = node
                break
            node = node.parent
        return distributor, master_distributor

# =============================================================================
# WALLET LEDGER
# =============================================================================

class WalletAccount(BaseModel):
    """Lock row and balance mirror for one (user, wallet type) ledger"""
    __tablename__ = 'wallets'

    user_id = Column(GUID(), nullable=False, index=True)
    user_role = Column(String(50), nullable=False)
    wallet_type = Column(db.Enum(WalletType), nullable=False)
    balance = Column(DECIMAL(15, 2), default=Decimal('0'), nullable=False)
    last_sequence = Column(Integer, default=0, nullable=False)
    is_frozen = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'wallet_type', name='uq_wallets_user_wallet_type'),
        CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
    )

    def __repr__(self):
        return f"<WalletAccount(user_id='{self.user_id}', type='{self.wallet_type.value}', balance='{self.balance}')>"


class WalletLedgerEntry(BaseModel):
    """Append-only ledger row; closing_balance = opening_balance + credit - debit"""
    __tablename__ = 'wallet_ledger'

    user_id = Column(GUID(), nullable=False, index=True)
    user_role = Column(String(50), nullable=False)
    wallet_type = Column(db.Enum(WalletType), nullable=False)
    sequence = Column(Integer, nullable=False)
    fund_category = Column(String(50))
    service_type = Column(String(50))
    tx_type = Column(db.Enum(LedgerTxType), nullable=False, index=True)
    credit = Column(DECIMAL(15, 2), default=Decimal('0'), nullable=False)
    debit = Column(DECIMAL(15, 2), default=Decimal('0'), nullable=False)
    opening_balance = Column(DECIMAL(15, 2), nullable=False)
    closing_balance = Column(DECIMAL(15, 2), nullable=False)
    reference_id = Column(String(150), unique=True, nullable=False)
    transaction_id = Column(GUID(), index=True)
    status = Column(db.Enum(LedgerEntryStatus), default=LedgerEntryStatus.COMPLETED, nullable=False)
    remarks = Column(Text)

    __table_args__ = (
        UniqueConstraint('user_id', 'wallet_type', 'sequence', name='uq_wallet_ledger_sequence'),
        Index('ix_wallet_ledger_user_wallet', 'user_id', 'wallet_type'),
    )

# =============================================================================
# BUSINESS TRANSACTIONS
# =============================================================================

class BBPSTransaction(BaseModel):
    """Bill payment debited from the retailer's primary wallet"""
    __tablename__ = 'bbps_transactions'

    retailer_id = Column(GUID(), nullable=False, index=True)
    biller_id = Column(String(100), index=True)
    biller_name = Column(String(255))
    category = Column(String(100))
    consumer_number = Column(String(100))
    bill_amount = Column(DECIMAL(15, 2), nullable=False)
    wallet_debit_id = Column(GUID())
    status = Column(db.Enum(BusinessTransactionStatus), default=BusinessTransactionStatus.PENDING,
                    nullable=False, index=True)


class AEPSTransaction(BaseModel):
    __tablename__ = 'aeps_transactions'

    user_id = Column(GUID(), nullable=False, index=True)
    user_role = Column(String(50), nullable=False)
    aeps_type = Column(String(50))
    amount = Column(DECIMAL(15, 2), default=Decimal('0'), nullable=False)
    wallet_debit_id = Column(GUID())
    status = Column(db.Enum(BusinessTransactionStatus), default=BusinessTransactionStatus.PENDING,
                    nullable=False, index=True)


class Settlement(BaseModel):
    """Wallet to bank settlement"""
    __tablename__ = 'settlements'

    user_id = Column(GUID(), nullable=False, index=True)
    user_role = Column(String(50), nullable=False)
    amount = Column(DECIMAL(15, 2), nullable=False)
    charge = Column(DECIMAL(15, 2), default=Decimal('0'))
    settlement_mode = Column(String(20))
    ledger_entry_id = Column(GUID())
    status = Column(db.Enum(BusinessTransactionStatus), default=BusinessTransactionStatus.PENDING,
                    nullable=False, index=True)


class POSTransaction(BaseModel):
    """Card / UPI collection credited to the retailer's primary wallet"""
    __tablename__ = 'pos_transactions'

    retailer_id = Column(GUID(), nullable=False, index=True)
    amount = Column(DECIMAL(15, 2), nullable=False)
    mode = Column(String(10))
    card_type = Column(String(20))
    brand_type = Column(String(50))
    settlement_type = Column(String(5), default='T1')
    mdr_amount = Column(DECIMAL(15, 2), default=Decimal('0'))
    net_amount = Column(DECIMAL(15, 2))
    wallet_credit_id = Column(GUID())
    status = Column(db.Enum(BusinessTransactionStatus), default=BusinessTransactionStatus.PENDING,
                    nullable=False, index=True)

# =============================================================================
# REVERSALS
# =============================================================================

class Reversal(BaseModel):
    """Durable record of one attempt to undo a transaction's wallet effect"""
    __tablename__ = 'reversals'

    original_transaction_id = Column(GUID(), nullable=False, index=True)
    transaction_type = Column(db.Enum(ReversalTransactionType), nullable=False)
    variant = Column(String(50), nullable=False)
    user_id = Column(GUID(), nullable=False, index=True)
    user_role = Column(String(50), nullable=False)
    wallet_type = Column(db.Enum(WalletType), nullable=False)
    original_amount = Column(DECIMAL(15, 2), nullable=False)
    reversal_amount = Column(DECIMAL(15, 2), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(db.Enum(ReversalStatus), default=ReversalStatus.PROCESSING, nullable=False, index=True)
    original_ledger_id = Column(GUID())
    reversal_ledger_id = Column(GUID())
    admin_id = Column(GUID(), index=True)
    ip_address = Column(IPAddressType)
    user_agent = Column(Text)
    remarks = Column(Text)
    meta_data = Column(JSONType, default=dict)
    steps = Column(JSONType, default=list)
    failure_reason = Column(Text)
    completed_at = Column(DateTime)

    __table_args__ = (
        # At most one processing/completed reversal per original transaction
        Index(
            'uq_reversals_active_original', 'transaction_type', 'original_transaction_id',
            unique=True,
            postgresql_where=text("status IN ('PROCESSING', 'COMPLETED')"),
            sqlite_where=text("status IN ('PROCESSING', 'COMPLETED')"),
        ),
    )

    def record_step(self, step, outcome, **detail):
        """Append a saga step outcome; reassigned so the JSON column is flagged dirty"""
        entry = {'step': step, 'outcome': outcome, 'at': datetime.utcnow().isoformat()}
        entry.update(detail)
        self.steps = list(self.steps or []) + [entry]

    @property
    def is_terminal(self):
        return self.status in (ReversalStatus.COMPLETED, ReversalStatus.FAILED)

# =============================================================================
# COMMISSION SCHEMES
# =============================================================================

class Scheme(BaseModel):
    """Named bundle of BBPS, payout and MDR rate slabs"""
    __tablename__ = 'schemes'

    name = Column(String(255), nullable=False)
    description = Column(Text)
    scheme_type = Column(db.Enum(SchemeType), nullable=False, index=True)
    service_scope = Column(db.Enum(ServiceScope), default=ServiceScope.ALL, nullable=False)
    priority = Column(Integer, default=100, nullable=False)
    created_by_id = Column(GUID())
    created_by_role = Column(String(50))
    status = Column(db.Enum(RecordStatus), default=RecordStatus.ACTIVE, nullable=False, index=True)
    effective_from = Column(DateTime, default=datetime.utcnow, nullable=False)
    effective_to = Column(DateTime)

    bbps_commissions = db.relationship('SchemeBBPSCommission', backref='scheme', lazy='dynamic',
                                       cascade='all, delete-orphan')
    payout_charges = db.relationship('SchemePayoutCharge', backref='scheme', lazy='dynamic',
                                     cascade='all, delete-orphan')
    mdr_rates = db.relationship('SchemeMDRRate', backref='scheme', lazy='dynamic',
                                cascade='all, delete-orphan')
    mappings = db.relationship('SchemeMapping', backref='scheme', lazy='dynamic',
                               cascade='all, delete-orphan')

    def is_effective(self, at=None):
        at = at or datetime.utcnow()
        if self.status != RecordStatus.ACTIVE:
            return False
        if self.effective_from and self.effective_from > at:
            return False
        return self.effective_to is None or self.effective_to > at


class SchemeMapping(BaseModel):
    """Assignment of a scheme to a partner; one active mapping per entity"""
    __tablename__ = 'scheme_mappings'

    scheme_id = Column(GUID(), db.ForeignKey('schemes.id'), nullable=False, index=True)
    entity_id = Column(GUID(), nullable=False, index=True)
    entity_role = Column(db.Enum(MappingEntityRole), nullable=False)
    service_type = Column(String(20))
    assigned_by_id = Column(GUID())
    assigned_by_role = Column(String(50))
    status = Column(db.Enum(RecordStatus), default=RecordStatus.ACTIVE, nullable=False, index=True)
    priority = Column(Integer, default=100, nullable=False)
    effective_from = Column(DateTime, default=datetime.utcnow, nullable=False)
    effective_to = Column(DateTime)

    __table_args__ = (
        Index(
            'uq_scheme_mappings_active_entity', 'entity_id',
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )


class SlabMixin:
    """Amount range and the five priced components shared by BBPS and payout slabs"""

    min_amount = Column(DECIMAL(15, 2), default=Decimal('0'), nullable=False)
    max_amount = Column(DECIMAL(15, 2), default=Decimal('999999999'), nullable=False)
    retailer_charge = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    retailer_charge_type = Column(db.Enum(ChargeType), default=ChargeType.FLAT, nullable=False)
    retailer_commission = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    retailer_commission_type = Column(db.Enum(ChargeType), default=ChargeType.FLAT, nullable=False)
    distributor_commission = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    distributor_commission_type = Column(db.Enum(ChargeType), default=ChargeType.FLAT, nullable=False)
    md_commission = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    md_commission_type = Column(db.Enum(ChargeType), default=ChargeType.FLAT, nullable=False)
    company_charge = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    company_charge_type = Column(db.Enum(ChargeType), default=ChargeType.FLAT, nullable=False)
    status = Column(db.Enum(RecordStatus), default=RecordStatus.ACTIVE, nullable=False)

    COMPONENTS = (
        'retailer_charge', 'retailer_commission', 'distributor_commission',
        'md_commission', 'company_charge',
    )


class SchemeBBPSCommission(SlabMixin, BaseModel):
    __tablename__ = 'scheme_bbps_commissions'

    scheme_id = Column(GUID(), db.ForeignKey('schemes.id'), nullable=False, index=True)
    category = Column(String(100))


class SchemePayoutCharge(SlabMixin, BaseModel):
    __tablename__ = 'scheme_payout_charges'

    scheme_id = Column(GUID(), db.ForeignKey('schemes.id'), nullable=False, index=True)
    transfer_mode = Column(String(20))


class SchemeMDRRate(BaseModel):
    """MDR percentages per payment dimension, tiered by T+1 / T+0 settlement"""
    __tablename__ = 'scheme_mdr_rates'

    scheme_id = Column(GUID(), db.ForeignKey('schemes.id'), nullable=False, index=True)
    mode = Column(String(10), nullable=False)
    card_type = Column(String(20))
    brand_type = Column(String(50))
    card_classification = Column(String(50))
    retailer_mdr_t1 = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    retailer_mdr_t0 = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    distributor_mdr_t1 = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    distributor_mdr_t0 = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    md_mdr_t1 = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    md_mdr_t0 = Column(DECIMAL(10, 4), default=Decimal('0'), nullable=False)
    status = Column(db.Enum(RecordStatus), default=RecordStatus.ACTIVE, nullable=False)

    PARTIES = ('retailer', 'distributor', 'md')

# =============================================================================
# FAN-OUT AND AUDIT
# =============================================================================

class FanoutPosting(BaseModel):
    """One commission/charge component of a transaction's ledger fan-out"""
    __tablename__ = 'ledger_fanout_postings'

    transaction_id = Column(GUID(), nullable=False, index=True)
    transaction_type = Column(String(20), nullable=False)
    component = Column(String(50), nullable=False)
    user_id = Column(GUID(), nullable=False)
    user_role = Column(String(50), nullable=False)
    wallet_type = Column(db.Enum(WalletType), nullable=False)
    direction = Column(db.Enum(FanoutDirection), nullable=False)
    amount = Column(DECIMAL(15, 2), nullable=False)
    status = Column(db.Enum(FanoutStatus), default=FanoutStatus.PENDING, nullable=False, index=True)
    ledger_entry_id = Column(GUID())
    error = Column(Text)

    __table_args__ = (
        UniqueConstraint('transaction_id', 'component', name='uq_fanout_transaction_component'),
    )


class AdminAuditLog(BaseModel):
    """Append-only compliance trail of privileged mutations"""
    __tablename__ = 'admin_audit_log'

    admin_id = Column(GUID(), index=True)
    action_type = Column(db.Enum(AuditActionType), nullable=False, index=True)
    target_user_id = Column(GUID(), index=True)
    target_user_role = Column(String(50))
    wallet_type = Column(String(20))
    amount = Column(DECIMAL(15, 2))
    before_balance = Column(DECIMAL(15, 2))
    after_balance = Column(DECIMAL(15, 2))
    ip_address = Column(IPAddressType)
    user_agent = Column(Text)
    remarks = Column(Text)
    meta_data = Column(JSONType, default=dict)


__all__ = [
    'db', 'GUID', 'JSONType', 'IPAddressType', 'BaseModel',
    'UserRoleType', 'WalletType', 'LedgerTxType', 'LedgerEntryStatus',
    'BusinessTransactionStatus', 'ReversalTransactionType', 'ReversalStatus',
    'SchemeType', 'ServiceScope', 'RecordStatus', 'ChargeType', 'MappingEntityRole',
    'FanoutDirection', 'FanoutStatus', 'AuditActionType',
    'User', 'WalletAccount', 'WalletLedgerEntry',
    'BBPSTransaction', 'AEPSTransaction', 'Settlement', 'POSTransaction',
    'Reversal', 'Scheme', 'SchemeMapping', 'SchemeBBPSCommission',
    'SchemePayoutCharge', 'SchemeMDRRate', 'FanoutPosting', 'AdminAuditLog',
]
