"""Projects with default repositories; scan execution columns.

Revision ID: 20261015000000
Revises: 20261001000000
Create Date: 2026-10-15

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "20261015000000"
down_revision: Union[str, None] = "20261001000000"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("organization_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("default_repository_url", sa.String(length=2048), nullable=True),
        sa.Column("default_repository_branch", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_projects")),
        sa.UniqueConstraint("organization_id", "name", name="uq_projects_org_name"),
    )
    op.create_index(
        op.f("ix_projects_organization_id"), "projects", ["organization_id"], unique=False
    )

    op.add_column("scans", sa.Column("project_id", sa.Integer(), nullable=True))
    op.add_column("scans", sa.Column("workdir", sa.String(length=4096), nullable=True))
    op.add_column("scans", sa.Column("error_code", sa.String(length=64), nullable=True))
    op.add_column("scans", sa.Column("error_message", sa.Text(), nullable=True))
    op.add_column("scans", sa.Column("started_at", sa.DateTime(timezone=True), nullable=True))
    op.create_foreign_key(
        op.f("fk_scans_project_id_projects"),
        "scans",
        "projects",
        ["project_id"],
        ["id"],
        ondelete="SET NULL",
    )
    op.create_index(op.f("ix_scans_project_id"), "scans", ["project_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_scans_project_id"), table_name="scans")
    op.drop_constraint(op.f("fk_scans_project_id_projects"), "scans", type_="foreignkey")
    op.drop_column("scans", "started_at")
    op.drop_column("scans", "error_message")
    op.drop_column("scans", "error_code")
    op.drop_column("scans", "workdir")
    op.drop_column("scans", "project_id")
    op.drop_index(op.f("ix_projects_organization_id"), table_name="projects")
    op.drop_table("projects")
