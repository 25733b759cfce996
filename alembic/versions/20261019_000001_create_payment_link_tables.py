"""Create payment link tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

payment_link_configs (encrypted provider credentials per tenant),
payment_links and the transactions ledger.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
PROVIDERS = ("STRIPE", "PAYPAL", "SQUARE", "PAYPAY", "FINCODE")
LINK_STATUSES = ("PENDING", "COMPLETED", "EXPIRED", "CANCELLED")
TRANSACTION_STATUSES = ("PENDING", "SUCCEEDED", "FAILED", "REFUNDED", "CANCELLED", "EXPIRED")


def upgrade() -> None:
    op.create_table(
        "payment_link_configs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column(
            "provider",
            sa.Enum(*PROVIDERS, name="payment_link_config_provider", create_constraint=True),
            nullable=False,
        ),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("encrypted_config", sa.Text(), nullable=False),
        sa.Column("is_test_mode", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_tested_at", sa.DateTime(), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id", "provider", "display_name",
            name="uq_payment_link_configs_tenant_provider_name",
        ),
    )
    op.create_index("ix_payment_link_configs_tenant_id", "payment_link_configs", ["tenant_id"])
    op.create_index("ix_payment_link_configs_provider", "payment_link_configs", ["provider"])

    op.create_table(
        "payment_links",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("config_id", sa.String(36), nullable=False),
        sa.Column(
            "provider",
            sa.Enum(*PROVIDERS, name="payment_link_provider", create_constraint=True),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*LINK_STATUSES, name="payment_link_status", create_constraint=True),
            nullable=False,
        ),
        sa.Column("url", sa.String(2048), nullable=True),
        sa.Column("provider_link_id", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["config_id"],
            ["payment_link_configs.id"],
            name="fk_payment_links_config_id",
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_payment_links_tenant_id", "payment_links", ["tenant_id"])
    op.create_index("ix_payment_links_config_id", "payment_links", ["config_id"])
    op.create_index("ix_payment_links_status", "payment_links", ["status"])
    op.create_index("ix_payment_links_provider_link_id", "payment_links", ["provider_link_id"])
    op.create_index("ix_payment_links_expires_at", "payment_links", ["expires_at"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("payment_link_id", sa.String(36), nullable=False),
        sa.Column(
            "provider",
            sa.Enum(*PROVIDERS, name="transaction_provider", create_constraint=True),
            nullable=False,
        ),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("external_reference", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*TRANSACTION_STATUSES, name="transaction_status", create_constraint=True),
            nullable=False,
        ),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("is_refund", sa.Boolean(), nullable=False),
        sa.Column("refund_of_id", sa.String(36), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["payment_link_id"],
            ["payment_links.id"],
            name="fk_transactions_payment_link_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["refund_of_id"],
            ["transactions.id"],
            name="fk_transactions_refund_of_id",
        ),
        sa.UniqueConstraint("provider", "external_id", name="uq_transactions_provider_external_id"),
    )
    op.create_index("ix_transactions_payment_link_id", "transactions", ["payment_link_id"])
    op.create_index("ix_transactions_external_reference", "transactions", ["external_reference"])
    op.create_index("ix_transactions_status", "transactions", ["status"])
    # One refund row per capture; NULLs excluded so MS SQL accepts many non-refunds
    op.create_index(
        "uq_transactions_refund_of_id",
        "transactions",
        ["refund_of_id"],
        unique=True,
        mssql_where=sa.text("refund_of_id IS NOT NULL"),
        sqlite_where=sa.text("refund_of_id IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_transactions_refund_of_id", table_name="transactions")
    op.drop_index("ix_transactions_status", table_name="transactions")
    op.drop_index("ix_transactions_external_reference", table_name="transactions")
    op.drop_index("ix_transactions_payment_link_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_payment_links_expires_at", table_name="payment_links")
    op.drop_index("ix_payment_links_provider_link_id", table_name="payment_links")
    op.drop_index("ix_payment_links_status", table_name="payment_links")
    op.drop_index("ix_payment_links_config_id", table_name="payment_links")
    op.drop_index("ix_payment_links_tenant_id", table_name="payment_links")
    op.drop_table("payment_links")
    op.drop_index("ix_payment_link_configs_provider", table_name="payment_link_configs")
    op.drop_index("ix_payment_link_configs_tenant_id", table_name="payment_link_configs")
    op.drop_table("payment_link_configs")
