"""Gift Aid claims: charities, claims, donation records, gateway connections.

Revision ID: a1b2c3d4e501
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "a1b2c3d4e501"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── Charities ──
    op.create_table(
        "charities",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("hmrc_charid", sa.String(30), nullable=True),
        sa.Column("regulator_number", sa.String(50), nullable=True),
        sa.Column("gateway_connection_id", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
    )

    # ── Claims ──
    op.create_table(
        "claims",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("charity_id", sa.Integer,
                  sa.ForeignKey("charities.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("tax_year", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("donation_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("hmrc_correlation_id", sa.String(64), nullable=True),
        sa.Column("hmrc_last_message", sa.Text, nullable=True),
        sa.Column("hmrc_raw_response", sa.Text, nullable=True),
        sa.Column("submitted_by", sa.String(255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
    )
    op.create_index("ix_claims_charity_status", "claims", ["charity_id", "status"])

    # ── Donation records ──
    op.create_table(
        "donation_records",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("claim_id", sa.String(36),
                  sa.ForeignKey("claims.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("donor_title", sa.String(20), nullable=True),
        sa.Column("donor_first_name", sa.String(100), nullable=False),
        sa.Column("donor_last_name", sa.String(100), nullable=False),
        sa.Column("donor_address", sa.String(255), nullable=False),
        sa.Column("donor_postcode", sa.String(20), nullable=False),
        sa.Column("donation_date", sa.Date, nullable=False),
        sa.Column("donation_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
    )
    op.create_index("ix_donation_records_claim_id", "donation_records", ["claim_id"])

    # ── Gateway connections ──
    op.create_table(
        "gateway_connections",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("charity_id", sa.Integer,
                  sa.ForeignKey("charities.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("mode", sa.String(20), nullable=False, server_default="charity"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("credentials_encrypted", sa.Text, nullable=True),
        sa.Column("sender_id_masked", sa.String(50), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("updated_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now()),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
    )
    # At most one active connection per charity
    op.create_index(
        "uq_gateway_connections_active_charity",
        "gateway_connections",
        ["charity_id"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )


def downgrade():
    op.drop_index("uq_gateway_connections_active_charity", table_name="gateway_connections")
    op.drop_table("gateway_connections")
    op.drop_index("ix_donation_records_claim_id", table_name="donation_records")
    op.drop_table("donation_records")
    op.drop_index("ix_claims_charity_status", table_name="claims")
    op.drop_table("claims")
    op.drop_table("charities")
