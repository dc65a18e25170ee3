"""checkout tables

Clientes, cupons, sessões de pagamento e histórico; admin e logs de segurança/erro.

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

revision: str = "0001_checkout_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PAYMENT_STATUS = sa.Enum(
    "PENDING", "PROCESSING", "APPROVED", "REJECTED", "EXPIRED", "CANCELLED", name="paymentstatus"
)
PAYMENT_METHOD = sa.Enum("CREDIT_CARD", "PIX", name="paymentmethod")
DISCOUNT_TYPE = sa.Enum("PERCENTAGE", "FIXED", name="discounttype")


def _str(length: int | None = None):
    return sqlmodel.sql.sqltypes.AutoString(length=length)


def upgrade() -> None:
    op.create_table(
        "customer",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", _str(), nullable=False),
        sa.Column("email", _str(), nullable=False),
        sa.Column("phone", _str(), nullable=False),
        sa.Column("cpf", _str(11), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_customer_email", "customer", ["email"])
    op.create_index("ix_customer_cpf", "customer", ["cpf"])

    op.create_table(
        "coupon",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", _str(64), nullable=False),
        sa.Column("description", _str(255), nullable=True),
        sa.Column("discount_type", DISCOUNT_TYPE, nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_discount", sa.Numeric(12, 2), nullable=True),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_until", sa.DateTime(), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_coupon_code", "coupon", ["code"], unique=True)

    op.create_table(
        "paymentsession",
        sa.Column("id", _str(36), primary_key=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customer.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("final_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_source", _str(16), nullable=True),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False),
        sa.Column("installments", sa.Integer(), nullable=False),
        sa.Column("installment_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("coupon_code", _str(64), nullable=True),
        sa.Column("coupon_redeemed", sa.Boolean(), nullable=False),
        sa.Column("processor_transaction_id", _str(64), nullable=True),
        sa.Column("pix_qr_code", _str(), nullable=True),
        sa.Column("pix_key", _str(), nullable=True),
        sa.Column("pix_expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_paymentsession_customer_id", "paymentsession", ["customer_id"])
    op.create_index("ix_paymentsession_status", "paymentsession", ["status"])
    op.create_index("ix_paymentsession_processor_transaction_id", "paymentsession", ["processor_transaction_id"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", _str(36), nullable=False),
        sa.Column("from_status", _str(), nullable=True),
        sa.Column("to_status", _str(), nullable=False),
        sa.Column("source", _str(), nullable=False),
        sa.Column("detail", _str(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payment_events_payment_id", "payment_events", ["payment_id"])

    op.create_table(
        "admin_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", _str(), nullable=False),
        sa.Column("hashed_password", _str(), nullable=False),
        sa.Column("name", _str(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_admin_users_email", "admin_users", ["email"], unique=True)

    op.create_table(
        "security_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event", _str(), nullable=False),
        sa.Column("ip", _str(), nullable=True),
        sa.Column("endpoint", _str(), nullable=True),
        sa.Column("detail", _str(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_security_logs_event", "security_logs", ["event"])

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("endpoint", _str(), nullable=True),
        sa.Column("method", _str(), nullable=True),
        sa.Column("error_message", _str(), nullable=True),
        sa.Column("stack_trace", _str(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("error_logs")
    op.drop_index("ix_security_logs_event", table_name="security_logs")
    op.drop_table("security_logs")
    op.drop_index("ix_admin_users_email", table_name="admin_users")
    op.drop_table("admin_users")
    op.drop_index("ix_payment_events_payment_id", table_name="payment_events")
    op.drop_table("payment_events")
    op.drop_index("ix_paymentsession_processor_transaction_id", table_name="paymentsession")
    op.drop_index("ix_paymentsession_status", table_name="paymentsession")
    op.drop_index("ix_paymentsession_customer_id", table_name="paymentsession")
    op.drop_table("paymentsession")
    op.drop_index("ix_coupon_code", table_name="coupon")
    op.drop_table("coupon")
    op.drop_index("ix_customer_cpf", table_name="customer")
    op.drop_index("ix_customer_email", table_name="customer")
    op.drop_table("customer")
    for enum in (PAYMENT_STATUS, PAYMENT_METHOD, DISCOUNT_TYPE):
        enum.drop(op.get_bind(), checkfirst=True)
