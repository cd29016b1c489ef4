"""create_generation_ledger

Revision ID: 3f1a9c2d7e40
Revises:
Create Date: 2026-10-19 09:12:41.318205

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2d7e40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

resource_kind = sa.Enum("IMAGE", "VIDEO", "AUDIO", "TUNING", name="resourcekind")
event_type = sa.Enum(
    "SUBMITTED", "IN_PROGRESS", "POST_PROCESSING", "COMPLETED", "FAILED", name="generationeventtype"
)


def upgrade() -> None:
    """Create generations and generation_events tables."""
    op.create_table(
        "generations",
        sa.Column("generation_id", sqlmodel.AutoString(length=64), nullable=False),
        sa.Column("owner_ref", sqlmodel.AutoString(length=255), nullable=False),
        sa.Column("resource_kind", resource_kind, nullable=False),
        sa.Column("provider", sqlmodel.AutoString(length=50), nullable=False),
        sa.Column("correlation_refs", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("generation_id"),
    )
    op.create_index("ix_generations_owner_ref", "generations", ["owner_ref"])
    op.create_index("ix_generations_resource_kind", "generations", ["resource_kind"])

    # Append-only ledger: generation_id is intentionally not a foreign key
    op.create_table(
        "generation_events",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("generation_id", sqlmodel.AutoString(length=64), nullable=False),
        sa.Column("event_type", event_type, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index(
        "ix_generation_events_generation_order",
        "generation_events",
        ["generation_id", "created_at", "seq"],
    )
    op.create_index("ix_generation_events_event_type", "generation_events", ["event_type"])


def downgrade() -> None:
    """Drop ledger tables."""
    op.drop_index("ix_generation_events_event_type", table_name="generation_events")
    op.drop_index("ix_generation_events_generation_order", table_name="generation_events")
    op.drop_table("generation_events")
    op.drop_index("ix_generations_resource_kind", table_name="generations")
    op.drop_index("ix_generations_owner_ref", table_name="generations")
    op.drop_table("generations")
    event_type.drop(op.get_bind(), checkfirst=True)
    resource_kind.drop(op.get_bind(), checkfirst=True)
