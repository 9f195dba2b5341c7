"""Role templates, per-org slot roles with overrides, and memberships.

Revision ID: 0001_slot_access
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_slot_access"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # Global templates (one per slot)
    op.create_table(
        "role_templates",
        sa.Column("slot", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("default_label", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("slot BETWEEN 1 AND 10", name="ck_role_templates_slot"),
    )
    op.create_table(
        "role_template_permissions",
        sa.Column("slot", sa.Integer(), sa.ForeignKey("role_templates.slot"), primary_key=True),
        sa.Column("permission_key", sa.String(120), primary_key=True),
    )

    # Per-org configuration of a slot
    op.create_table(
        "org_roles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), nullable=False),
        sa.Column("slot", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("org_id", "slot", name="uq_org_roles_org_slot"),
        sa.CheckConstraint("slot BETWEEN 1 AND 10", name="ck_org_roles_slot"),
    )
    op.create_index("ix_org_roles_id", "org_roles", ["id"])
    op.create_index("ix_org_roles_org_id", "org_roles", ["org_id"])

    op.create_table(
        "org_role_permissions",
        sa.Column(
            "org_role_id",
            sa.Uuid(),
            sa.ForeignKey("org_roles.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("permission_key", sa.String(120), primary_key=True),
        sa.Column("allowed", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    # One slot per (user, org)
    op.create_table(
        "memberships",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), primary_key=True),
        sa.Column("slot", sa.Integer(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("slot BETWEEN 1 AND 10", name="ck_memberships_slot"),
    )
    op.create_index("ix_memberships_org_id", "memberships", ["org_id"])
    op.create_index("idx_memberships_org_slot", "memberships", ["org_id", "slot"])


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.drop_index("idx_memberships_org_slot", table_name="memberships")
    op.drop_index("ix_memberships_org_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("org_role_permissions")
    op.drop_index("ix_org_roles_org_id", table_name="org_roles")
    op.drop_index("ix_org_roles_id", table_name="org_roles")
    op.drop_table("org_roles")
    op.drop_table("role_template_permissions")
    op.drop_table("role_templates")
