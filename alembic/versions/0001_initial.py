"""initial

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns store member names.
_ACTIVE_SLOT = sa.text("status IN ('PENDING', 'CONFIRMED')")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", sa.Enum("USER", "ADMIN", name="userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role_active", "users", ["role", "is_active"], unique=False)

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("loyalty_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("account_number", sa.String(20), nullable=True, unique=True),
        sa.Column("account_name", sa.String(255), nullable=True),
        sa.Column("bank_name", sa.String(100), nullable=True),
        sa.Column("bank_code", sa.String(10), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("status", sa.Enum("ACTIVE", "INACTIVE", "SUSPENDED", name="walletstatus"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        sa.CheckConstraint("loyalty_points >= 0", name="ck_wallets_loyalty_points_non_negative"),
    )
    op.create_index("ix_wallets_status", "wallets", ["status"], unique=False)

    op.create_table(
        "wallet_ledger",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("wallet_id", sa.Integer, sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("loyalty_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("entry_type", sa.Enum("CREDIT", "DEBIT", name="ledgertype"), nullable=False),
        sa.Column("reference", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_wallet_ledger_reference", "wallet_ledger", ["reference"], unique=False)
    op.create_index("ix_wallet_ledger_wallet_id_type", "wallet_ledger", ["wallet_id", "entry_type"], unique=False)
    op.create_index("ux_wallet_ledger_reference_type", "wallet_ledger", ["reference", "entry_type"], unique=True)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("reference", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("wallet_id", sa.Integer, sa.ForeignKey("wallets.id"), nullable=True),
        sa.Column("direction", sa.Enum("CREDIT", "DEBIT", name="transactiondirection"), nullable=False),
        sa.Column(
            "purpose",
            sa.Enum("WALLET_TOPUP", "BOOKING_PAYMENT", "BILL_PAYMENT", name="transactionpurpose"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.Enum("PENDING", "COMPLETED", "FAILED", name="transactionstatus"), nullable=False),
        sa.Column("method", sa.Enum("CARD", "BANK_TRANSFER", "USSD", "WALLET", name="paymentmethod"), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("external_reference", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("meta", sa.JSON, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
    )
    op.create_index("ix_wallet_transactions_reference", "wallet_transactions", ["reference"], unique=True)
    op.create_index("ix_wallet_transactions_user_status", "wallet_transactions", ["user_id", "status"], unique=False)
    op.create_index("ix_wallet_transactions_purpose_status", "wallet_transactions", ["purpose", "status"], unique=False)

    op.create_table(
        "table_areas",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("table_number", sa.String(16), nullable=False, unique=True),
        sa.Column("section", sa.String(32), nullable=False),
        sa.Column("seats", sa.Integer, nullable=False),
        sa.Column("booking_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("table_id", sa.Integer, sa.ForeignKey("table_areas.id"), nullable=False),
        sa.Column("booking_date", sa.Date, nullable=False),
        sa.Column("guest_count", sa.Integer, nullable=False),
        sa.Column("guest_name", sa.String(255), nullable=False),
        sa.Column("guest_email", sa.String(255), nullable=False),
        sa.Column("guest_phone", sa.String(32), nullable=False),
        sa.Column("special_requests", sa.Text, nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "CONFIRMED", "CANCELLED", "COMPLETED", name="bookingstatus"),
            nullable=False,
        ),
        sa.Column("booking_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("payment_reference", sa.String(64), nullable=True, unique=True),
        sa.Column(
            "payment_status",
            sa.Enum("UNPAID", "PENDING", "PAID", "FAILED", "REFUNDED", name="bookingpaymentstatus"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index(
        "ux_bookings_active_table_date",
        "bookings",
        ["table_id", "booking_date"],
        unique=True,
        postgresql_where=_ACTIVE_SLOT,
    )
    op.create_index("ix_bookings_user_date", "bookings", ["user_id", "booking_date"], unique=False)


def downgrade():
    op.drop_index("ix_bookings_user_date", table_name="bookings")
    op.drop_index("ux_bookings_active_table_date", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("table_areas")
    op.drop_index("ix_wallet_transactions_purpose_status", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_user_status", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_reference", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    op.drop_index("ux_wallet_ledger_reference_type", table_name="wallet_ledger")
    op.drop_index("ix_wallet_ledger_wallet_id_type", table_name="wallet_ledger")
    op.drop_index("ix_wallet_ledger_reference", table_name="wallet_ledger")
    op.drop_table("wallet_ledger")
    op.drop_index("ix_wallets_status", table_name="wallets")
    op.drop_table("wallets")
    op.drop_index("ix_users_role_active", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    for name in (
        "bookingpaymentstatus",
        "bookingstatus",
        "paymentmethod",
        "transactionstatus",
        "transactionpurpose",
        "transactiondirection",
        "ledgertype",
        "walletstatus",
        "userrole",
    ):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
