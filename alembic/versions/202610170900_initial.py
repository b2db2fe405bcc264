"""initial family finance schema

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


transaction_type = sa.Enum("income", "expense", name="transactiontype")
category_type = sa.Enum("income", "expense", name="categorytype")
member_role = sa.Enum("admin", "member", "viewer", name="memberrole")
transaction_status = sa.Enum("valid", "deleted", "pending", name="transactionstatus")


def upgrade():
    op.create_table(
        "families",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("role", member_role, nullable=False, server_default="member"),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("email", sa.String(length=100), nullable=True),
        sa.Column("status", sa.SmallInteger(), nullable=False, server_default="1"),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_members_family_id", "members", ["family_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", category_type, nullable=False),
        sa.Column(
            "parent_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True
        ),
        sa.Column("path", sa.String(length=500), nullable=False, server_default="/"),
        sa.Column("level", sa.SmallInteger(), nullable=False, server_default="1"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("level >= 1", name="ck_categories_level_positive"),
    )
    op.create_index("ix_categories_path", "categories", ["path"])
    op.create_index("ix_categories_type_parent", "categories", ["type", "parent_id"])

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_tags_family_id", "tags", ["family_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("transaction_time", sa.DateTime(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("payment_method", sa.String(length=50), nullable=True),
        sa.Column(
            "status", transaction_status, nullable=False, server_default="valid"
        ),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_family_time", "transactions", ["family_id", "transaction_time"]
    )
    op.create_index(
        "ix_transactions_family_status_type",
        "transactions",
        ["family_id", "status", "type"],
    )
    op.create_index("ix_transactions_member", "transactions", ["member_id"])
    op.create_index("ix_transactions_category", "transactions", ["category_id"])

    op.create_table(
        "transaction_tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            nullable=False,
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_transaction_tags_transaction_id", "transaction_tags", ["transaction_id"]
    )
    op.create_index("ix_transaction_tags_tag_id", "transaction_tags", ["tag_id"])


def downgrade():
    op.drop_index("ix_transaction_tags_tag_id", table_name="transaction_tags")
    op.drop_index("ix_transaction_tags_transaction_id", table_name="transaction_tags")
    op.drop_table("transaction_tags")
    op.drop_index("ix_transactions_category", table_name="transactions")
    op.drop_index("ix_transactions_member", table_name="transactions")
    op.drop_index("ix_transactions_family_status_type", table_name="transactions")
    op.drop_index("ix_transactions_family_time", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_tags_family_id", table_name="tags")
    op.drop_table("tags")
    op.drop_index("ix_categories_type_parent", table_name="categories")
    op.drop_index("ix_categories_path", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_members_family_id", table_name="members")
    op.drop_table("members")
    op.drop_table("families")
    bind = op.get_bind()
    for enum in (transaction_status, member_role, category_type, transaction_type):
        enum.drop(bind, checkfirst=True)
