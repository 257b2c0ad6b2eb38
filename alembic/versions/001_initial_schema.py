"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Postgres full-text index over name and description
TEXT_SEARCH_EXPRESSION = (
    "to_tsvector('simple', coalesce(name, '') || ' ' || coalesce(description, ''))"
)


def upgrade() -> None:
    # Amenities table
    op.create_table(
        "amenities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("country", sa.String(100), nullable=False, server_default="Kenya"),
        sa.Column("county", sa.String(100), nullable=False),
        sa.Column("constituency", sa.String(100), nullable=True),
        sa.Column("ward", sa.String(100), nullable=True),
        sa.Column("estate", sa.String(100), nullable=True),
        sa.Column("address_line1", sa.String(255), nullable=True),
        sa.Column("address_line2", sa.String(255), nullable=True),
        sa.Column("town", sa.String(100), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("geolocation", sa.JSON(), nullable=False),
        sa.Column("contact", sa.JSON(), nullable=True),
        sa.Column("operating_hours", sa.JSON(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("source", sa.String(50), nullable=False, server_default="manual"),
        sa.Column("source_ref", sa.String(255), nullable=True),
        sa.Column("is_auto_discovered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("discovered_at", sa.DateTime(), nullable=True),
        sa.Column("approval_status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_by", sa.String(64), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_level", sa.String(50), nullable=False, server_default="none"),
        sa.Column("verified_by", sa.String(64), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("verification_history", sa.JSON(), nullable=False),
        sa.Column("lifecycle", sa.String(50), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_amenities_lat_lng", "amenities", ["latitude", "longitude"])
    op.create_index("ix_amenities_category_type", "amenities", ["category", "type"])
    op.create_index("ix_amenities_county_category", "amenities", ["county", "category"])
    op.create_index("ix_amenities_verified_lifecycle", "amenities", ["verified", "lifecycle"])
    op.create_index("ix_amenities_source_approval", "amenities", ["source", "approval_status"])
    op.create_index(
        "ix_amenities_auto_approval", "amenities", ["is_auto_discovered", "approval_status"]
    )
    op.create_index("ix_amenities_name", "amenities", ["name"])
    op.create_index(
        "ix_amenities_text_search",
        "amenities",
        [sa.text(TEXT_SEARCH_EXPRESSION)],
        postgresql_using="gin",
    )

    # Properties (amenity cache columns only)
    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="active"),
        sa.Column("county", sa.String(100), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("nearby_amenities", sa.JSON(), nullable=True),
        sa.Column("amenity_score", sa.Float(), nullable=True),
        sa.Column("amenities_refreshed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_properties_county_status", "properties", ["county", "status"])
    op.create_index("ix_properties_refreshed", "properties", ["amenities_refreshed_at"])


def downgrade() -> None:
    op.drop_index("ix_amenities_text_search", table_name="amenities")
    op.drop_table("properties")
    op.drop_table("amenities")
