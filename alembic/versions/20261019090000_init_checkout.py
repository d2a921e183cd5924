from alembic import op
import sqlalchemy as sa

revision = "20261019090000"
down_revision = None

UTC_NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=240), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False, unique=True),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('sale_price', sa.Float(), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('image_url', sa.String(length=1024), nullable=False, server_default=''),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('order_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_spent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('loyalty', sa.String(length=16), nullable=False, server_default='bronze'),
    )
    op.create_table(
        'pricing_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('location', sa.String(length=120), nullable=False, unique=True, index=True),
    )
    for name in ('shipping_fees', 'payment_fees'):
        op.create_table(
            name,
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('config_id', sa.Integer(), sa.ForeignKey('pricing_configs.id', ondelete='CASCADE'), nullable=False),
            sa.Column('method', sa.String(length=64), nullable=False),
            sa.Column('fee', sa.Float(), nullable=False),
        )
    op.create_table(
        'tax_tiers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('config_id', sa.Integer(), sa.ForeignKey('pricing_configs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('min_amount', sa.Float(), nullable=False),
        sa.Column('max_amount', sa.Float(), nullable=True),
        sa.Column('rate', sa.Float(), nullable=False),
    )
    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=64), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Float(), nullable=False),
        sa.Column('min_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('max_discount', sa.Float(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.String(length=40), nullable=False, unique=True, index=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=False, index=True),
        sa.Column('user_email', sa.String(length=255), nullable=False, index=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending', index=True),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('billing_address', sa.JSON(), nullable=False),
        sa.Column('location', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='pending', index=True),
        sa.Column('transaction_id', sa.String(length=64), nullable=True),
        sa.Column('phone_number', sa.String(length=16), nullable=True),
        sa.Column('merchant_request_id', sa.String(length=64), nullable=True, index=True),
        sa.Column('checkout_request_id', sa.String(length=64), nullable=True, index=True),
        sa.Column('mpesa_receipt_number', sa.String(length=64), nullable=True),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('subtotal', sa.Float(), nullable=False),
        sa.Column('discount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('tax', sa.Float(), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('shipping', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='KES'),
        sa.Column('coupon_code', sa.String(length=64), nullable=True),
        sa.Column('shipping_method', sa.String(length=64), nullable=False),
        sa.Column('estimated_delivery', sa.DateTime(), nullable=True),
        sa.Column('tracking_number', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=240), nullable=False),
        sa.Column('image', sa.String(length=1024), nullable=False, server_default=''),
        sa.Column('unit_price', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('variant', sa.String(length=64), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=False, server_default=''),
    )
    op.create_table(
        'order_status_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
    )

def downgrade():
    op.drop_table('order_status_events')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('coupons')
    op.drop_table('tax_tiers')
    op.drop_table('payment_fees')
    op.drop_table('shipping_fees')
    op.drop_table('pricing_configs')
    op.drop_table('customers')
    op.drop_table('products')
