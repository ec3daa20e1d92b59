"""Create StoryPrint tables (Snowflake BIGINT IDs)

Revision ID: 7c2e4a91d0b3
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "7c2e4a91d0b3"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "personalized_books",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("original_template_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("child_name", sa.String(length=64), nullable=False),
        sa.Column("child_age", sa.Integer(), nullable=True),
        sa.Column("gender_preference", sa.String(length=16), nullable=True),
        sa.Column("dedication_message", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payment_id", sa.String(length=128), nullable=True),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("personalized_content", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_personalized_books_user_id", "personalized_books", ["user_id"], unique=False
    )

    op.create_table(
        "print_service_options",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("pod_package_id", sa.String(length=27), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("trim_size", sa.String(length=32), nullable=False),
        sa.Column("color", sa.String(length=8), nullable=False),
        sa.Column("print_quality", sa.String(length=16), nullable=False),
        sa.Column("binding", sa.String(length=64), nullable=False),
        sa.Column("paper_type", sa.String(length=64), nullable=False),
        sa.Column("paper_ppi", sa.Integer(), nullable=False),
        sa.Column("cover_finish", sa.String(length=32), nullable=False),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("min_pages", sa.Integer(), nullable=False),
        sa.Column("max_pages", sa.Integer(), nullable=False),
        sa.Column("estimated_production_days", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_print_service_options_pod_package_id",
        "print_service_options",
        ["pod_package_id"],
        unique=True,
    )

    op.create_table(
        "print_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("personalized_book_id", sa.BigInteger(), nullable=False),
        sa.Column("service_option_id", sa.BigInteger(), nullable=False),
        sa.Column("lulu_print_job_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payment_status", sa.String(length=16), nullable=False),
        sa.Column("payment_id", sa.String(length=128), nullable=True),
        sa.Column("paid_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=False),
        sa.Column("shipping_level", sa.String(length=16), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("production_delay", sa.Integer(), nullable=False),
        sa.Column("cost_breakdown", sa.JSON(), nullable=True),
        sa.Column("tracking_info", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["personalized_book_id"], ["personalized_books.id"]),
        sa.ForeignKeyConstraint(["service_option_id"], ["print_service_options.id"]),
        sa.CheckConstraint("quantity BETWEEN 1 AND 1000", name="ck_print_orders_quantity"),
    )
    op.create_index("ix_print_orders_user_id", "print_orders", ["user_id"], unique=False)
    op.create_index(
        "ix_print_orders_personalized_book_id",
        "print_orders",
        ["personalized_book_id"],
        unique=False,
    )
    op.create_index(
        "ix_print_orders_lulu_print_job_id", "print_orders", ["lulu_print_job_id"], unique=False
    )
    op.create_index("ix_print_orders_status", "print_orders", ["status"], unique=False)

    op.create_table(
        "print_order_payments",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("print_order_id", sa.BigInteger(), nullable=False),
        sa.Column("personalized_book_id", sa.BigInteger(), nullable=False),
        sa.Column("checkout_session_id", sa.String(length=255), nullable=False),
        sa.Column("payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("payment_method", sa.String(length=64), nullable=True),
        sa.Column("receipt_url", sa.String(length=1024), nullable=True),
        sa.Column(
            "callback_processed", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["print_order_id"], ["print_orders.id"]),
        sa.ForeignKeyConstraint(["personalized_book_id"], ["personalized_books.id"]),
    )
    op.create_index(
        "ix_print_order_payments_checkout_session_id",
        "print_order_payments",
        ["checkout_session_id"],
        unique=True,
    )
    op.create_index(
        "ix_print_order_payments_payment_intent_id",
        "print_order_payments",
        ["payment_intent_id"],
        unique=False,
    )
    op.create_index(
        "ix_print_order_payments_print_order_id",
        "print_order_payments",
        ["print_order_id"],
        unique=False,
    )
    op.create_index(
        "ix_print_order_payments_user_id", "print_order_payments", ["user_id"], unique=False
    )
    op.create_index(
        "ix_print_order_payments_status", "print_order_payments", ["status"], unique=False
    )

    op.create_table(
        "receipts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("personalized_book_id", sa.BigInteger(), nullable=False),
        sa.Column("reference_code", sa.String(length=64), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_charge_id", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payment_method", sa.String(length=64), nullable=True),
        sa.Column("receipt_url", sa.String(length=1024), nullable=True),
        sa.Column("receipt_number", sa.String(length=64), nullable=True),
        sa.Column("book_details", sa.JSON(), nullable=True),
        sa.Column("user_details", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_reason", sa.String(length=255), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["personalized_book_id"], ["personalized_books.id"]),
    )
    op.create_index("ix_receipts_reference_code", "receipts", ["reference_code"], unique=True)
    op.create_index(
        "ix_receipts_stripe_payment_intent_id",
        "receipts",
        ["stripe_payment_intent_id"],
        unique=True,
    )
    op.create_index("ix_receipts_user_id", "receipts", ["user_id"], unique=False)
    op.create_index(
        "ix_receipts_personalized_book_id", "receipts", ["personalized_book_id"], unique=False
    )
    op.create_index("ix_receipts_status", "receipts", ["status"], unique=False)

    op.create_table(
        "stripe_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_stripe_events_event_id", "stripe_events", ["event_id"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_stripe_events_event_id", table_name="stripe_events")
    op.drop_table("stripe_events")

    op.drop_index("ix_receipts_status", table_name="receipts")
    op.drop_index("ix_receipts_personalized_book_id", table_name="receipts")
    op.drop_index("ix_receipts_user_id", table_name="receipts")
    op.drop_index("ix_receipts_stripe_payment_intent_id", table_name="receipts")
    op.drop_index("ix_receipts_reference_code", table_name="receipts")
    op.drop_table("receipts")

    op.drop_index("ix_print_order_payments_status", table_name="print_order_payments")
    op.drop_index("ix_print_order_payments_user_id", table_name="print_order_payments")
    op.drop_index("ix_print_order_payments_print_order_id", table_name="print_order_payments")
    op.drop_index("ix_print_order_payments_payment_intent_id", table_name="print_order_payments")
    op.drop_index(
        "ix_print_order_payments_checkout_session_id", table_name="print_order_payments"
    )
    op.drop_table("print_order_payments")

    op.drop_index("ix_print_orders_status", table_name="print_orders")
    op.drop_index("ix_print_orders_lulu_print_job_id", table_name="print_orders")
    op.drop_index("ix_print_orders_personalized_book_id", table_name="print_orders")
    op.drop_index("ix_print_orders_user_id", table_name="print_orders")
    op.drop_table("print_orders")

    op.drop_index("ix_print_service_options_pod_package_id", table_name="print_service_options")
    op.drop_table("print_service_options")

    op.drop_index("ix_personalized_books_user_id", table_name="personalized_books")
    op.drop_table("personalized_books")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
