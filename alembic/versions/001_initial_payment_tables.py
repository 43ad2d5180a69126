"""initial payment tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- payment_keys ---
    op.create_table(
        "payment_keys",
        sa.Column("payment_key_id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False, server_default=""),
        sa.Column("identity", sa.String(64), nullable=False),
        sa.Column("secret_key", sa.String(255), nullable=False),
        sa.Column("primary", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("franchise_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_payment_keys_primary", "payment_keys", ["primary"])
    op.create_index("ix_payment_keys_franchise_id", "payment_keys", ["franchise_id"])

    # --- cards ---
    op.create_table(
        "cards",
        sa.Column("card_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("billing_key", sa.Text, nullable=False),
        sa.Column("card_name", sa.String(128), nullable=False),
        sa.Column("order_by", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint("user_id", "card_name", name="uq_cards_user_card_name"),
    )
    op.create_index("ix_cards_user_id", "cards", ["user_id"])

    # --- records ---
    op.create_table(
        "records",
        sa.Column("record_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("card_id", sa.String(36), nullable=True),
        sa.Column("payment_key_id", sa.String(36), nullable=True),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("initial_amount", sa.Integer, nullable=False),
        sa.Column("tid", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("properties", sa.JSON, nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("processed_at", sa.DateTime, nullable=True),
        sa.Column("refunded_at", sa.DateTime, nullable=True),
        sa.Column("retired_at", sa.DateTime, nullable=True),
        sa.Column("dunned_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_records_user_id", "records", ["user_id"])
    op.create_index("ix_records_processed_at", "records", ["processed_at"])

    # --- coupon_groups ---
    op.create_table(
        "coupon_groups",
        sa.Column("coupon_group_id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(64), nullable=True, unique=True),
        sa.Column("name", sa.String(16), nullable=False, unique=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("validity", sa.Integer, nullable=True),
        sa.Column("limit", sa.Integer, nullable=True),
        sa.Column("abbreviation", sa.String(32), nullable=True),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("properties", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
    )

    # --- coupons ---
    op.create_table(
        "coupons",
        sa.Column("coupon_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "coupon_group_id",
            sa.String(36),
            sa.ForeignKey("coupon_groups.coupon_group_id"),
            nullable=False,
        ),
        sa.Column("properties", sa.JSON, nullable=False),
        sa.Column("used_at", sa.DateTime, nullable=True),
        sa.Column("expired_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_coupons_user_id", "coupons", ["user_id"])
    op.create_index("ix_coupons_coupon_group_id", "coupons", ["coupon_group_id"])

    # --- dunnings ---
    op.create_table(
        "dunnings",
        sa.Column("dunning_id", sa.String(36), primary_key=True),
        sa.Column("record_retry_id", sa.String(36), sa.ForeignKey("records.record_id"), nullable=True),
        sa.Column("record_call_id", sa.String(36), sa.ForeignKey("records.record_id"), nullable=True),
        sa.Column("record_message_id", sa.String(36), sa.ForeignKey("records.record_id"), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_dunnings_record_retry_id", "dunnings", ["record_retry_id"])
    op.create_index("ix_dunnings_record_call_id", "dunnings", ["record_call_id"])
    op.create_index("ix_dunnings_record_message_id", "dunnings", ["record_message_id"])


def downgrade() -> None:
    op.drop_table("dunnings")
    op.drop_table("coupons")
    op.drop_table("coupon_groups")
    op.drop_table("records")
    op.drop_table("cards")
    op.drop_table("payment_keys")
