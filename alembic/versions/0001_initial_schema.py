"""Create queue, note and completion tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

note_status = postgresql.ENUM("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="note_status", create_type=False)


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
  return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=nullable)


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "queue_jobs",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("queue_name", sa.String(), nullable=False),
    sa.Column("job_name", sa.String(), nullable=False),
    sa.Column("data_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("priority", sa.Integer(), nullable=False),
    sa.Column("attempts_made", sa.Integer(), nullable=False),
    sa.Column("max_attempts", sa.Integer(), nullable=False),
    sa.Column("backoff_ms", sa.Integer(), nullable=True),
    sa.Column("remove_on_complete", sa.Boolean(), nullable=False),
    sa.Column("remove_on_fail", sa.Boolean(), nullable=False),
    _timestamp("available_at"),
    sa.Column("locked_by", sa.String(), nullable=True),
    sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("last_error", sa.Text(), nullable=True),
    sa.Column("result_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    _timestamp("created_at"),
    _timestamp("updated_at"),
    sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_queue_jobs_queue_name"), "queue_jobs", ["queue_name"], unique=False)
  op.create_index("ix_queue_jobs_claimable", "queue_jobs", ["queue_name", "priority", "available_at"], unique=False, postgresql_where=sa.text("status = 'waiting'"))
  op.create_index("ix_queue_jobs_active_lock", "queue_jobs", ["queue_name", "locked_at"], unique=False, postgresql_where=sa.text("status = 'active'"))

  note_status.create(op.get_bind(), checkfirst=True)
  op.create_table(
    "notes",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("import_id", sa.String(), nullable=True),
    sa.Column("title", sa.String(), nullable=True),
    sa.Column("html_file_name", sa.String(), nullable=True),
    sa.Column("source_url", sa.String(), nullable=True),
    sa.Column("contents", sa.Text(), nullable=True),
    sa.Column("status", note_status, nullable=False),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("error_code", sa.String(), nullable=True),
    sa.Column("parsing_error_count", sa.Integer(), nullable=False),
    _timestamp("created_at"),
    _timestamp("updated_at"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_notes_import_id"), "notes", ["import_id"], unique=False)

  op.create_table(
    "parsed_ingredient_lines",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("note_id", sa.String(), nullable=False),
    sa.Column("block_index", sa.Integer(), nullable=False),
    sa.Column("line_index", sa.Integer(), nullable=False),
    sa.Column("reference", sa.Text(), nullable=False),
    sa.Column("parse_status", sa.String(), nullable=False),
    sa.Column("rule_ids_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("segments_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    _timestamp("updated_at"),
    sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_parsed_ingredient_lines_note_id"), "parsed_ingredient_lines", ["note_id"], unique=False)

  op.create_table(
    "parsed_instruction_lines",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("note_id", sa.String(), nullable=False),
    sa.Column("line_index", sa.Integer(), nullable=False),
    sa.Column("original_text", sa.Text(), nullable=False),
    sa.Column("normalized_text", sa.Text(), nullable=True),
    sa.Column("parse_status", sa.String(), nullable=False),
    _timestamp("updated_at"),
    sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_parsed_instruction_lines_note_id"), "parsed_instruction_lines", ["note_id"], unique=False)

  op.create_table(
    "note_images",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("note_id", sa.String(), nullable=False),
    sa.Column("image_index", sa.Integer(), nullable=False),
    sa.Column("storage_key", sa.String(), nullable=False),
    sa.Column("content_type", sa.String(), nullable=True),
    sa.Column("width", sa.Integer(), nullable=True),
    sa.Column("height", sa.Integer(), nullable=True),
    sa.Column("size_bytes", sa.Integer(), nullable=True),
    _timestamp("created_at"),
    sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("note_id", "image_index", name="ux_note_images_note_index"),
  )
  op.create_index(op.f("ix_note_images_note_id"), "note_images", ["note_id"], unique=False)

  op.create_table(
    "note_categories",
    sa.Column("note_id", sa.String(), nullable=False),
    sa.Column("category", sa.String(), nullable=True),
    sa.Column("tags_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    _timestamp("updated_at"),
    sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("note_id"),
  )
  op.create_index(op.f("ix_note_categories_category"), "note_categories", ["category"], unique=False)

  op.create_table(
    "parsing_patterns",
    sa.Column("pattern_key", sa.String(), nullable=False),
    sa.Column("rule_ids_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("occurrence_count", sa.Integer(), nullable=False),
    sa.Column("example_line", sa.Text(), nullable=True),
    _timestamp("created_at"),
    _timestamp("updated_at"),
    sa.PrimaryKeyConstraint("pattern_key"),
  )

  op.create_table(
    "parsing_pattern_occurrences",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("pattern_key", sa.String(), nullable=False),
    sa.Column("occurrence_key", sa.String(), nullable=False),
    _timestamp("created_at"),
    sa.ForeignKeyConstraint(["pattern_key"], ["parsing_patterns.pattern_key"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("pattern_key", "occurrence_key", name="ux_parsing_pattern_occurrences_pattern_occurrence"),
  )

  op.create_table(
    "note_completion_counters",
    sa.Column("note_id", sa.String(), nullable=False),
    sa.Column("import_id", sa.String(), nullable=True),
    sa.Column("html_file_name", sa.String(), nullable=True),
    sa.Column("total_units", sa.Integer(), nullable=False),
    sa.Column("completed_units", sa.Integer(), nullable=False),
    sa.Column("failed_units", sa.Integer(), nullable=False),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    _timestamp("created_at"),
    _timestamp("updated_at"),
    sa.CheckConstraint("total_units >= 0", name="ck_note_completion_total_non_negative"),
    sa.CheckConstraint("completed_units <= total_units", name="ck_note_completion_not_over_total"),
    sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("note_id"),
  )
  op.create_index(op.f("ix_note_completion_counters_import_id"), "note_completion_counters", ["import_id"], unique=False)

  op.create_table(
    "note_completion_units",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("note_id", sa.String(), nullable=False),
    sa.Column("unit_key", sa.String(), nullable=False),
    sa.Column("succeeded", sa.Boolean(), nullable=False),
    _timestamp("created_at"),
    sa.ForeignKeyConstraint(["note_id"], ["note_completion_counters.note_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("note_id", "unit_key", name="ux_note_completion_units_note_unit"),
  )
  op.create_index(op.f("ix_note_completion_units_note_id"), "note_completion_units", ["note_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_note_completion_units_note_id"), table_name="note_completion_units")
  op.drop_table("note_completion_units")
  op.drop_index(op.f("ix_note_completion_counters_import_id"), table_name="note_completion_counters")
  op.drop_table("note_completion_counters")
  op.drop_table("parsing_pattern_occurrences")
  op.drop_table("parsing_patterns")
  op.drop_index(op.f("ix_note_categories_category"), table_name="note_categories")
  op.drop_table("note_categories")
  op.drop_index(op.f("ix_note_images_note_id"), table_name="note_images")
  op.drop_table("note_images")
  op.drop_index(op.f("ix_parsed_instruction_lines_note_id"), table_name="parsed_instruction_lines")
  op.drop_table("parsed_instruction_lines")
  op.drop_index(op.f("ix_parsed_ingredient_lines_note_id"), table_name="parsed_ingredient_lines")
  op.drop_table("parsed_ingredient_lines")
  op.drop_index(op.f("ix_notes_import_id"), table_name="notes")
  op.drop_table("notes")
  note_status.drop(op.get_bind(), checkfirst=True)
  op.drop_index("ix_queue_jobs_active_lock", table_name="queue_jobs")
  op.drop_index("ix_queue_jobs_claimable", table_name="queue_jobs")
  op.drop_index(op.f("ix_queue_jobs_queue_name"), table_name="queue_jobs")
  op.drop_table("queue_jobs")
