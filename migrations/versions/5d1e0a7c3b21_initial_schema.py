"""initial schema: exchange rates, carousel, board members

Revision ID: 5d1e0a7c3b21
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "5d1e0a7c3b21"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "exchange_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("currency_code", sa.String(3), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("flag_glyph", sa.String(16), nullable=True),
        sa.Column("buy_rate", sa.Numeric(20, 6), nullable=False),
        sa.Column("sell_rate", sa.Numeric(20, 6), nullable=False),
        sa.Column("base_currency_code", sa.String(3), nullable=False, server_default="TZS"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("currency_code"),
    )

    op.create_table(
        "carousel_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(50), nullable=False),
        sa.Column("description", sa.String(150), nullable=False),
        sa.Column("button_title", sa.String(100), nullable=False),
        sa.Column("link", sa.String(500), nullable=False),
        sa.Column("image", sa.String(1000), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "board_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("linkedin_link", sa.String(500), nullable=True),
        sa.Column("photo", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_board_members_position", "board_members", ["position"])


def downgrade() -> None:
    op.drop_index("idx_board_members_position", table_name="board_members")
    op.drop_table("board_members")
    op.drop_table("carousel_items")
    op.drop_table("exchange_rates")
