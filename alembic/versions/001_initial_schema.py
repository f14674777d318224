"""Initial schema with jobs table

Revision ID: 001
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_STATES = ("queued", "running", "success", "dead")


def upgrade() -> None:
    job_state = sa.Enum(*JOB_STATES, name="job_state", create_constraint=True)

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("payload", sa.LargeBinary(), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("state", job_state, nullable=False, server_default="queued"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_jobs_idempotency_key"),
        sa.CheckConstraint("retry_count >= 0", name="ck_jobs_retry_count_non_negative"),
        sa.CheckConstraint("max_retries >= 0", name="ck_jobs_max_retries_non_negative"),
        sa.CheckConstraint(
            "(lease_owner IS NULL) = (lease_expiry IS NULL)",
            name="ck_jobs_lease_fields_together",
        ),
        sa.CheckConstraint(
            "(state = 'running') = (lease_owner IS NOT NULL)",
            name="ck_jobs_lease_iff_running",
        ),
    )

    op.create_index("ix_jobs_job_type", "jobs", ["job_type"])
    # Claim scan: eligible rows in FIFO order
    op.create_index("ix_jobs_claim", "jobs", ["state", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_jobs_claim", table_name="jobs")
    op.drop_index("ix_jobs_job_type", table_name="jobs")
    op.drop_table("jobs")

    op.execute("DROP TYPE IF EXISTS job_state")
