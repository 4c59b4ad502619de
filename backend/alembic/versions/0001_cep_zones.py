"""cep zones and event price overrides

Revision ID: 0001_cep_zones
Revises:
Create Date: 2026-10-19 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_cep_zones"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "cep_zones",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500)),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="specific"),
        sa.Column("ranges", sa.JSON(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("priority > 0", name="ck_cep_zones_priority_positive"),
        sa.CheckConstraint("price >= 0", name="ck_cep_zones_price_non_negative"),
    )
    op.create_index("ix_cep_zones_status_priority", "cep_zones", ["status", "priority"])

    op.create_table(
        "event_cep_zone_prices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column(
            "zone_id",
            sa.Integer(),
            sa.ForeignKey("cep_zones.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("event_id", "zone_id", name="uq_event_cep_zone_prices_event_zone"),
    )
    op.create_index("ix_event_cep_zone_prices_event_id", "event_cep_zone_prices", ["event_id"])


def downgrade() -> None:
    op.drop_index("ix_event_cep_zone_prices_event_id", table_name="event_cep_zone_prices")
    op.drop_table("event_cep_zone_prices")
    op.drop_index("ix_cep_zones_status_priority", table_name="cep_zones")
    op.drop_table("cep_zones")
