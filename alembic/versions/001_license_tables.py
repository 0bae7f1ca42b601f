"""Create licenses, license_domains and email_otps.

Idempotent: app startup runs Base.metadata.create_all before migrating,
so each table is only created when it is missing.

Revision ID: 001_license_tables
Revises:
Create Date: 2026-09-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_license_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LICENSE_STATUSES = ("ACTIVE", "TRIALING", "PAST_DUE", "CANCELED", "INCOMPLETE")


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    existing = set(inspector.get_table_names())

    if "licenses" not in existing:
        op.create_table(
            "licenses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("license_key", sa.String(), nullable=False),
            sa.Column("stripe_customer_id", sa.String(), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(), nullable=False),
            sa.Column("status", sa.Enum(*LICENSE_STATUSES, name="license_status"), nullable=False),
            sa.Column("customer_email", sa.String(), nullable=True),
            sa.Column("key_sent_at", sa.DateTime(), nullable=True),
            sa.Column("max_domains", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_licenses_id", "licenses", ["id"])
        op.create_index("ix_licenses_license_key", "licenses", ["license_key"], unique=True)
        op.create_index("ix_licenses_stripe_customer_id", "licenses", ["stripe_customer_id"])
        op.create_index("ix_licenses_stripe_subscription_id", "licenses", ["stripe_subscription_id"], unique=True)
        print("✅ Created licenses table")

    if "license_domains" not in existing:
        op.create_table(
            "license_domains",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("license_id", sa.Integer(), sa.ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False),
            sa.Column("hostname", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("last_seen_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("license_id", "hostname", name="uq_license_domains_license_hostname"),
        )
        op.create_index("ix_license_domains_id", "license_domains", ["id"])
        op.create_index("ix_license_domains_license_id", "license_domains", ["license_id"])
        print("✅ Created license_domains table")

    if "email_otps" not in existing:
        op.create_table(
            "email_otps",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("code_hash", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("used_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_email_otps_id", "email_otps", ["id"])
        op.create_index("ix_email_otps_email", "email_otps", ["email"])
        op.create_index("ix_email_otps_created_at", "email_otps", ["created_at"])
        print("✅ Created email_otps table")


def downgrade() -> None:
    op.drop_table("email_otps")
    op.drop_table("license_domains")
    op.drop_table("licenses")
    sa.Enum(name="license_status").drop(op.get_bind(), checkfirst=True)
