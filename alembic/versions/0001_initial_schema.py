"""initial drawing schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

from blockdraw.models.types import BLOCK_NUMBER_TYPE, UTCDateTime


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "drawings",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("scope_id", sa.String(length=64), nullable=False),
        sa.Column("channel_id", sa.String(length=64), nullable=True),
        sa.Column("host_id", sa.String(length=64), nullable=True),
        sa.Column("secret", sa.String(length=128), nullable=False),
        sa.Column("algorithm_key", sa.String(length=100), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_drawings")),
    )
    op.create_index(op.f("ix_drawings_scope_id"), "drawings", ["scope_id"], unique=False)

    op.create_table(
        "draw_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("drawing_id", sa.String(length=64), nullable=False),
        sa.Column("item_key", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("prize", sa.String(length=255), nullable=False),
        sa.Column("ends_at", UTCDateTime(), nullable=False),
        sa.Column("winners_requested", sa.Integer(), nullable=False),
        sa.Column("required_capability", sa.String(length=64), nullable=True),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("target_block_number", BLOCK_NUMBER_TYPE, nullable=True),
        sa.Column("seed_block_id", sa.String(length=128), nullable=True),
        sa.Column("seed_block_number", BLOCK_NUMBER_TYPE, nullable=True),
        sa.Column("winners", sa.JSON(), nullable=False),
        sa.Column("awaiting_since", UTCDateTime(), nullable=True),
        sa.Column("finalized_at", UTCDateTime(), nullable=True),
        sa.CheckConstraint(
            "state IN ('open','awaiting_seed','finalized')",
            name=op.f("ck_draw_items_state_enum"),
        ),
        sa.CheckConstraint(
            "winners_requested >= 1", name=op.f("ck_draw_items_winners_positive")
        ),
        sa.ForeignKeyConstraint(
            ["drawing_id"],
            ["drawings.id"],
            name=op.f("fk_draw_items_drawing_id_drawings"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_items")),
        sa.UniqueConstraint("drawing_id", "item_key", name="uq_draw_items_drawing_key"),
    )
    op.create_index(op.f("ix_draw_items_drawing_id"), "draw_items", ["drawing_id"], unique=False)
    op.create_index("ix_draw_items_state", "draw_items", ["state"], unique=False)

    op.create_table(
        "item_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.String(length=64), nullable=False),
        sa.Column("joined_at", UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["item_id"],
            ["draw_items.id"],
            name=op.f("fk_item_entries_item_id_draw_items"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_item_entries")),
        sa.UniqueConstraint("item_id", "participant_id", name="uq_item_entries_participant"),
    )
    op.create_index(op.f("ix_item_entries_item_id"), "item_entries", ["item_id"], unique=False)

    op.create_table(
        "item_scores",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.String(length=64), nullable=False),
        sa.Column("hmac", sa.String(length=128), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(
            ["item_id"],
            ["draw_items.id"],
            name=op.f("fk_item_scores_item_id_draw_items"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_item_scores")),
        sa.UniqueConstraint("item_id", "participant_id", name="uq_item_scores_participant"),
    )
    op.create_index(op.f("ix_item_scores_item_id"), "item_scores", ["item_id"], unique=False)

    op.create_table(
        "scope_policies",
        sa.Column("scope_id", sa.String(length=64), nullable=False),
        sa.Column("required_capability", sa.String(length=64), nullable=True),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("scope_id", name=op.f("pk_scope_policies")),
    )


def downgrade() -> None:
    op.drop_table("scope_policies")
    op.drop_index(op.f("ix_item_scores_item_id"), table_name="item_scores")
    op.drop_table("item_scores")
    op.drop_index(op.f("ix_item_entries_item_id"), table_name="item_entries")
    op.drop_table("item_entries")
    op.drop_index("ix_draw_items_state", table_name="draw_items")
    op.drop_index(op.f("ix_draw_items_drawing_id"), table_name="draw_items")
    op.drop_table("draw_items")
    op.drop_index(op.f("ix_drawings_scope_id"), table_name="drawings")
    op.drop_table("drawings")
