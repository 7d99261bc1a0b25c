"""Initial schema: users, organizations, activities, registrations, notifications, admin_log

Revision ID: 3c1e7a90b2d4
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3c1e7a90b2d4"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("push_token", sa.String(255), nullable=True),
        sa.Column("positions", postgresql.JSONB(), nullable=True),
        _ts("created_at", server_default=sa.func.now()),
    )

    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        _ts("created_at", server_default=sa.func.now()),
    )

    op.create_table(
        "organization_admins",
        sa.Column(
            "organization_id", sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        _ts("added_at", server_default=sa.func.now()),
    )

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("kind", sa.String(20), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True
        ),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("cost", sa.Numeric(10, 2), nullable=True),
        _ts("registration_deadline", nullable=True),
        _ts("starts_at", nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("tracks_teams", sa.Boolean(), nullable=True),
        sa.Column("next_queue_seq", sa.Integer(), nullable=True),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
        _ts("cancelled_at", nullable=True),
    )

    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "activity_id", sa.Integer(),
            sa.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("role", sa.String(20), nullable=True),
        sa.Column("team_assignment", sa.String(10), nullable=True),
        sa.Column("waitlist_position", sa.Integer(), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=True),
        sa.Column("queue_seq", sa.Integer(), nullable=True),
        _ts("registered_at", server_default=sa.func.now()),
        _ts("promoted_at", nullable=True),
        _ts("payment_marked_at", nullable=True),
        _ts("payment_verified_at", nullable=True),
        _ts("payment_deadline_at", nullable=True),
        _ts("cancelled_at", nullable=True),
        _ts("updated_at", server_default=sa.func.now()),
        sa.UniqueConstraint("activity_id", "user_id", name="uq_registrations_activity_user"),
    )
    op.create_index(
        "ix_registrations_activity_status", "registrations", ["activity_id", "status"]
    )
    op.create_index(
        "ix_registrations_payment_deadline", "registrations", ["status", "payment_deadline_at"]
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=True),
        sa.Column("activity_id", sa.Integer(), nullable=True),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        _ts("created_at", server_default=sa.func.now()),
        _ts("read_at", nullable=True),
    )
    op.create_index(
        "ix_notifications_user_created", "notifications", ["user_id", "created_at"]
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _ts("timestamp", server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    op.drop_index("ix_admin_log_target", table_name="admin_log")
    op.drop_index("ix_admin_log_actor_time", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_registrations_payment_deadline", table_name="registrations")
    op.drop_index("ix_registrations_activity_status", table_name="registrations")
    op.drop_table("registrations")
    op.drop_table("activities")
    op.drop_table("organization_admins")
    op.drop_table("organizations")
    op.drop_table("users")
