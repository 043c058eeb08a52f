"""Create app task queue and integration settings tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "app_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("target", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("message", sa.String(), nullable=False, server_default=""),
        sa.Column("error_detail", sa.Text(), nullable=False, server_default=""),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("options_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("log_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("retried_from", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["retried_from"], ["app_tasks.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_app_tasks_target", "app_tasks", ["target"])
    op.create_index("ix_app_tasks_action", "app_tasks", ["action"])
    op.create_index("ix_app_tasks_status", "app_tasks", ["status"])
    op.create_index("ix_app_tasks_retried_from", "app_tasks", ["retried_from"])
    op.create_index("idx_app_tasks_target_status", "app_tasks", ["target", "status"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.Text(), nullable=False, server_default=""),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_index("idx_app_tasks_target_status", table_name="app_tasks")
    op.drop_index("ix_app_tasks_retried_from", table_name="app_tasks")
    op.drop_index("ix_app_tasks_status", table_name="app_tasks")
    op.drop_index("ix_app_tasks_action", table_name="app_tasks")
    op.drop_index("ix_app_tasks_target", table_name="app_tasks")
    op.drop_table("app_tasks")
