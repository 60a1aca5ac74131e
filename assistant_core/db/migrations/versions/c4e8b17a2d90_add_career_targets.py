"""add_career_targets

Revision ID: c4e8b17a2d90
Revises: a1f3c9d20b7e
Create Date: 2026-10-18 15:40:02.117645

Adds target job roles and target domains, plus the current-position fields
the update_profile tool edits.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql as pg

# revision identifiers, used by Alembic.
revision: str = "c4e8b17a2d90"
down_revision: Union[str, Sequence[str], None] = "a1f3c9d20b7e"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _target_table(table: str, column: str, constraint: str) -> None:
    op.create_table(
        table,
        sa.Column(
            "id",
            pg.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(column, sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("user_id", column, name=constraint),
    )
    op.create_index(f"ix_{table}_user_id", table, ["user_id"])


def upgrade() -> None:
    op.add_column("users", sa.Column("years_of_experience", sa.Integer(), nullable=True))
    op.add_column("users", sa.Column("current_company_name", sa.Text(), nullable=True))
    op.add_column("users", sa.Column("current_job_role_title", sa.Text(), nullable=True))

    _target_table("target_job_roles", "title", "uq_target_job_role_per_user")
    _target_table("target_domains", "name", "uq_target_domain_per_user")


def downgrade() -> None:
    op.drop_table("target_domains")
    op.drop_table("target_job_roles")
    op.drop_column("users", "current_job_role_title")
    op.drop_column("users", "current_company_name")
    op.drop_column("users", "years_of_experience")
