"""create recruiter cv schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "recruiters",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_recruiters_email"), "recruiters", ["email"], unique=True)

    op.create_table(
        "credit_accounts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("credits_total", sa.Integer(), nullable=False),
        sa.Column("credits_remaining", sa.Integer(), nullable=False),
        sa.Column("credits_used_this_period", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("credits_remaining >= 0", name="ck_credit_accounts_remaining_non_negative"),
        sa.CheckConstraint("credits_remaining <= credits_total", name="ck_credit_accounts_remaining_le_total"),
        sa.CheckConstraint("credits_used_this_period >= 0", name="ck_credit_accounts_used_non_negative"),
        sa.ForeignKeyConstraint(["owner_id"], ["recruiters.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_credit_accounts_owner_id"), "credit_accounts", ["owner_id"], unique=True)

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("entry_type", sa.String(), nullable=False),
        sa.Column("delta_credits", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("period_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["recruiters.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_credit_ledger_owner_id"), "credit_ledger", ["owner_id"], unique=False)
    op.create_index(op.f("ix_credit_ledger_period_key"), "credit_ledger", ["period_key"], unique=False)
    op.create_index(op.f("ix_credit_ledger_created_at"), "credit_ledger", ["created_at"], unique=False)

    op.create_table(
        "resume_profiles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("headline", sa.String(), nullable=True),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=True),
        sa.Column("skills", sa.JSON(), nullable=True),
        sa.Column("job_titles", sa.JSON(), nullable=True),
        sa.Column("companies", sa.JSON(), nullable=True),
        sa.Column("experience_years", sa.Float(), nullable=True),
        sa.Column("education_level", sa.String(), nullable=True),
        sa.Column("degrees", sa.JSON(), nullable=True),
        sa.Column("languages", sa.JSON(), nullable=True),
        sa.Column("open_to_work", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_currently_employed", sa.Boolean(), nullable=True),
        sa.Column("is_searchable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("linkedin_url", sa.String(), nullable=True),
        sa.Column("resume_file_url", sa.String(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_resume_profiles_country"), "resume_profiles", ["country"], unique=False)
    op.create_index(op.f("ix_resume_profiles_is_searchable"), "resume_profiles", ["is_searchable"], unique=False)

    op.create_table(
        "unlock_grants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("resume_id", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revealed_payload", sa.JSON(), nullable=False),
        sa.Column("unlock_count", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["owner_id"], ["recruiters.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "resume_id", name="uq_unlock_grants_owner_resume"),
    )
    op.create_index(op.f("ix_unlock_grants_owner_id"), "unlock_grants", ["owner_id"], unique=False)
    op.create_index(op.f("ix_unlock_grants_resume_id"), "unlock_grants", ["resume_id"], unique=False)
    op.create_index(op.f("ix_unlock_grants_expires_at"), "unlock_grants", ["expires_at"], unique=False)

    op.create_table(
        "profile_access_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("resume_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["recruiters.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_profile_access_logs_owner_id"), "profile_access_logs", ["owner_id"], unique=False)
    op.create_index(op.f("ix_profile_access_logs_resume_id"), "profile_access_logs", ["resume_id"], unique=False)
    op.create_index(op.f("ix_profile_access_logs_created_at"), "profile_access_logs", ["created_at"], unique=False)

    op.create_table(
        "buckets",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(), nullable=False, server_default="#3B82F6"),
        sa.Column("icon", sa.String(), nullable=False, server_default="folder"),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["recruiters.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "name", name="uq_buckets_owner_name"),
    )
    op.create_index(op.f("ix_buckets_owner_id"), "buckets", ["owner_id"], unique=False)

    op.create_table(
        "bucket_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("bucket_id", sa.String(), nullable=False),
        sa.Column("resume_id", sa.String(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("added_by", sa.String(), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["bucket_id"], ["buckets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bucket_id", "resume_id", name="uq_bucket_items_bucket_resume"),
    )
    op.create_index(op.f("ix_bucket_items_bucket_id"), "bucket_items", ["bucket_id"], unique=False)
    op.create_index(op.f("ix_bucket_items_resume_id"), "bucket_items", ["resume_id"], unique=False)
    op.create_index(op.f("ix_bucket_items_added_at"), "bucket_items", ["added_at"], unique=False)

    op.create_table(
        "bucket_activity_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("bucket_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["bucket_id"], ["buckets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bucket_activity_logs_bucket_id"), "bucket_activity_logs", ["bucket_id"], unique=False)
    op.create_index(op.f("ix_bucket_activity_logs_created_at"), "bucket_activity_logs", ["created_at"], unique=False)

    op.create_table(
        "saved_searches",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("filters_json", sa.JSON(), nullable=False),
        sa.Column("filters_hash", sa.String(length=64), nullable=False),
        sa.Column("search_name", sa.String(), nullable=False),
        sa.Column("use_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("latest_result_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["recruiters.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "filters_hash", name="uq_saved_searches_owner_filters"),
    )
    op.create_index(op.f("ix_saved_searches_owner_id"), "saved_searches", ["owner_id"], unique=False)
    op.create_index(op.f("ix_saved_searches_last_used_at"), "saved_searches", ["last_used_at"], unique=False)

    op.create_table(
        "search_result_samples",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("saved_search_id", sa.String(), nullable=False),
        sa.Column("result_count", sa.Integer(), nullable=False),
        sa.Column("trigger", sa.String(), nullable=False, server_default="search"),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["saved_search_id"], ["saved_searches.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_search_result_samples_saved_search_id"), "search_result_samples", ["saved_search_id"], unique=False)
    op.create_index(op.f("ix_search_result_samples_recorded_at"), "search_result_samples", ["recorded_at"], unique=False)


def downgrade() -> None:
    op.drop_table("search_result_samples")
    op.drop_table("saved_searches")
    op.drop_table("bucket_activity_logs")
    op.drop_table("bucket_items")
    op.drop_table("buckets")
    op.drop_table("profile_access_logs")
    op.drop_table("unlock_grants")
    op.drop_table("resume_profiles")
    op.drop_table("credit_ledger")
    op.drop_table("credit_accounts")
    op.drop_index(op.f("ix_recruiters_email"), table_name="recruiters")
    op.drop_table("recruiters")
