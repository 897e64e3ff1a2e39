"""search index tables

Revision ID: 3c5e1f0a9b27
Revises:
Create Date: 2026-10-18 09:12:41.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c5e1f0a9b27'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table(
        "feature_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("protocol", sa.String(), nullable=False),
        sa.Column("source_url", sa.String(), nullable=True),
        sa.Column("table_name", sa.String(), nullable=True),
        sa.Column("primary_key_attribute", sa.String(), nullable=False),
        sa.Column("default_geometry_attribute", sa.String(), nullable=False),
        sa.Column("hide_attributes_json", sa.String(), nullable=False),
    )
    op.create_index("ix_feature_types_name", "feature_types", ["name"], unique=False)

    op.create_table(
        "search_indexes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("feature_type_id", sa.Integer(), nullable=True),
        sa.Column("search_fields_json", sa.String(), nullable=False),
        sa.Column("display_fields_json", sa.String(), nullable=False),
        sa.Column("comment", sa.String(), nullable=True),
        sa.Column("last_indexed", sa.DateTime(), nullable=True),
        sa.Column("schedule_json", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="initial"),
        sa.Column("summary_json", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_search_indexes_feature_type_id", "search_indexes", ["feature_type_id"], unique=False)
    op.create_index("ix_search_indexes_status", "search_indexes", ["status"], unique=False)
    op.create_index("ix_search_indexes_created_at", "search_indexes", ["created_at"], unique=False)

    op.create_table(
        "app_layer_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_name", sa.String(), nullable=False),
        sa.Column("layer_name", sa.String(), nullable=False),
        sa.Column("search_index_id", sa.Integer(), nullable=True),
    )
    op.create_index("ix_app_layer_settings_application_name", "app_layer_settings", ["application_name"], unique=False)
    op.create_index("ix_app_layer_settings_search_index_id", "app_layer_settings", ["search_index_id"], unique=False)
    op.create_index(
        "idx_app_layer_settings_app_layer",
        "app_layer_settings",
        ["application_name", "layer_name"],
        unique=True,
    )

    op.create_table(
        "task_results",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_group", sa.String(), nullable=False),
        sa.Column("job_name", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("last_result", sa.String(), nullable=True),
        sa.Column("last_finished_at", sa.DateTime(), nullable=True),
        sa.Column("executions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_runtime_ms", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_task_results_job_group", "task_results", ["job_group"], unique=False)
    op.create_index("ix_task_results_job_name", "task_results", ["job_name"], unique=False)
    op.create_index("ix_task_results_updated_at", "task_results", ["updated_at"], unique=False)
    op.create_index("idx_task_results_group_name", "task_results", ["job_group", "job_name"], unique=True)


def downgrade() -> None:
    """Downgrade schema."""

    op.drop_index("idx_task_results_group_name", table_name="task_results")
    op.drop_index("ix_task_results_updated_at", table_name="task_results")
    op.drop_index("ix_task_results_job_name", table_name="task_results")
    op.drop_index("ix_task_results_job_group", table_name="task_results")
    op.drop_table("task_results")

    op.drop_index("idx_app_layer_settings_app_layer", table_name="app_layer_settings")
    op.drop_index("ix_app_layer_settings_search_index_id", table_name="app_layer_settings")
    op.drop_index("ix_app_layer_settings_application_name", table_name="app_layer_settings")
    op.drop_table("app_layer_settings")

    op.drop_index("ix_search_indexes_created_at", table_name="search_indexes")
    op.drop_index("ix_search_indexes_status", table_name="search_indexes")
    op.drop_index("ix_search_indexes_feature_type_id", table_name="search_indexes")
    op.drop_table("search_indexes")

    op.drop_index("ix_feature_types_name", table_name="feature_types")
    op.drop_table("feature_types")
