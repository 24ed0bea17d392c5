"""initial repair shop schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(created: bool = True):
    cols = []
    if created:
        cols.append(sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')))
    cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')))
    return cols


def upgrade():
    # --- authz ---
    op.create_table('permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=64), nullable=False, unique=True),
        sa.Column('service', sa.String(length=32), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        *_timestamps(created=False)
    )
    op.create_index('ix_permissions_code', 'permissions', ['code'])
    op.create_index('ix_permissions_service', 'permissions', ['service'])

    op.create_table('roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        *_timestamps(created=False)
    )

    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='technician'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(created=False)
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table('role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permission'),
    )
    op.create_table('user_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_role'),
    )

    # --- customers & catalog ---
    op.create_table('customers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('notes', sa.Text()),
        *_timestamps()
    )
    op.create_index('ix_customers_name', 'customers', ['name'])
    op.create_index('ix_customers_email', 'customers', ['email'])

    op.create_table('devices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('brand', sa.String(length=64), nullable=False),
        sa.Column('model_name', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=True, unique=True),
        sa.Column('release_date', sa.String(length=32)),
        sa.Column('image_url', sa.String(length=512)),
        sa.Column('device_type', sa.String(length=32), nullable=False, server_default='smartphone'),
        sa.Column('specifications', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps()
    )
    op.create_index('ix_devices_brand', 'devices', ['brand'])
    op.create_index('ix_devices_name', 'devices', ['name'])

    op.create_table('services',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False, unique=True),
        sa.Column('category', sa.String(length=64), nullable=False, server_default='general'),
        sa.Column('base_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('estimated_minutes', sa.Integer()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps()
    )
    op.create_index('ix_services_category', 'services', ['category'])

    # --- appointments & tickets ---
    op.create_table('appointments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('appointment_number', sa.String(length=16), unique=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('device_id', sa.Integer(), sa.ForeignKey('devices.id'), nullable=True),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('scheduled_time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='scheduled'),
        sa.Column('issues', sa.JSON()),
        sa.Column('service_ids', sa.JSON()),
        sa.Column('description', sa.Text()),
        sa.Column('urgency', sa.String(length=16), nullable=False, server_default='scheduled'),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='phone'),
        sa.Column('notes', sa.Text()),
        sa.Column('assigned_to', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('estimated_cost_cents', sa.Integer()),
        sa.Column('cancellation_reason', sa.Text()),
        sa.Column('confirmation_sent_at', sa.DateTime()),
        sa.Column('checked_in_at', sa.DateTime()),
        sa.Column('converted_to_ticket_id', sa.Integer()),
        *_timestamps()
    )
    op.create_index('ix_appointments_appointment_number', 'appointments', ['appointment_number'])
    op.create_index('ix_appointments_customer_id', 'appointments', ['customer_id'])
    op.create_index('ix_appointments_scheduled_date', 'appointments', ['scheduled_date'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])

    op.create_table('repair_tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_number', sa.String(length=16), unique=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('device_id', sa.Integer(), sa.ForeignKey('devices.id'), nullable=True),
        sa.Column('device_brand', sa.String(length=64)),
        sa.Column('device_model', sa.String(length=128)),
        sa.Column('serial_number', sa.String(length=64)),
        sa.Column('imei', sa.String(length=32)),
        sa.Column('repair_issues', sa.JSON()),
        sa.Column('description', sa.Text()),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='new'),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='medium'),
        sa.Column('estimated_cost_cents', sa.Integer()),
        sa.Column('actual_cost_cents', sa.Integer()),
        sa.Column('assigned_to', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('appointment_id', sa.Integer()),
        sa.Column('timer_started_at', sa.DateTime()),
        sa.Column('timer_user_id', sa.Integer()),
        sa.Column('total_time_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime()),
        *_timestamps()
    )
    op.create_index('ix_repair_tickets_ticket_number', 'repair_tickets', ['ticket_number'])
    op.create_index('ix_repair_tickets_customer_id', 'repair_tickets', ['customer_id'])
    op.create_index('ix_repair_tickets_status', 'repair_tickets', ['status'])
    op.create_index('ix_repair_tickets_assigned_to', 'repair_tickets', ['assigned_to'])
    op.create_index('ix_repair_tickets_timer_user_id', 'repair_tickets', ['timer_user_id'])

    op.create_table('ticket_services',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('repair_tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', sa.Integer(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(created=False)
    )
    op.create_index('ix_ticket_services_ticket_id', 'ticket_services', ['ticket_id'])

    op.create_table('ticket_notes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('repair_tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer()),
        sa.Column('note_type', sa.String(length=16), nullable=False, server_default='internal'),
        sa.Column('content', sa.Text(), nullable=False),
        *_timestamps()
    )
    op.create_index('ix_ticket_notes_ticket_id', 'ticket_notes', ['ticket_id'])

    op.create_table('time_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('repair_tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text()),
        *_timestamps()
    )
    op.create_index('ix_time_entries_ticket_id', 'time_entries', ['ticket_id'])
    op.create_index('ix_time_entries_user_id', 'time_entries', ['user_id'])

    # --- public integration ---
    op.create_table('api_keys',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('key_hash', sa.String(length=64), nullable=False, unique=True),
        sa.Column('key_prefix', sa.String(length=8), nullable=False),
        sa.Column('permissions', sa.JSON()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('last_used_at', sa.DateTime()),
        sa.Column('rate_limit_per_hour', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('created_by', sa.Integer()),
        *_timestamps()
    )
    op.create_index('ix_api_keys_key_hash', 'api_keys', ['key_hash'])

    op.create_table('allowed_domains',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('api_key_id', sa.Integer(), sa.ForeignKey('api_keys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(created=False),
        sa.UniqueConstraint('api_key_id', 'domain', name='uq_api_key_domain'),
    )
    op.create_index('ix_allowed_domains_api_key_id', 'allowed_domains', ['api_key_id'])

    # --- audit & email ---
    op.create_table('user_activity_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('activity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64)),
        sa.Column('entity_id', sa.String(length=64)),
        sa.Column('details', sa.JSON()),
        *_timestamps()
    )
    op.create_index('ix_user_activity_logs_user_id', 'user_activity_logs', ['user_id'])
    op.create_index('ix_user_activity_logs_activity_type', 'user_activity_logs', ['activity_type'])
    op.create_index('ix_user_activity_logs_entity_type', 'user_activity_logs', ['entity_type'])
    op.create_index('ix_user_activity_logs_created_at', 'user_activity_logs', ['created_at'])

    op.create_table('api_request_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('api_key_id', sa.Integer()),
        sa.Column('endpoint', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=8), nullable=False),
        sa.Column('origin', sa.String(length=255)),
        sa.Column('ip_address', sa.String(length=64)),
        sa.Column('user_agent', sa.String(length=255)),
        sa.Column('request_body', sa.JSON()),
        sa.Column('response_status', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.JSON()),
        sa.Column('error_message', sa.Text()),
        sa.Column('duration_ms', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps()
    )
    op.create_index('ix_api_request_logs_api_key_id', 'api_request_logs', ['api_key_id'])
    op.create_index('ix_api_request_logs_response_status', 'api_request_logs', ['response_status'])
    op.create_index('ix_api_request_logs_created_at', 'api_request_logs', ['created_at'])

    op.create_table('email_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('recipient', sa.String(length=128), nullable=False),
        sa.Column('subject', sa.String(length=255), nullable=False),
        sa.Column('template', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('provider_message_id', sa.String(length=128)),
        sa.Column('error_message', sa.Text()),
        sa.Column('entity_type', sa.String(length=64)),
        sa.Column('entity_id', sa.String(length=64)),
        *_timestamps()
    )
    op.create_index('ix_email_logs_recipient', 'email_logs', ['recipient'])
    op.create_index('ix_email_logs_template', 'email_logs', ['template'])


def downgrade():
    for table in (
        'email_logs', 'api_request_logs', 'user_activity_logs', 'allowed_domains', 'api_keys',
        'time_entries', 'ticket_notes', 'ticket_services', 'repair_tickets', 'appointments',
        'services', 'devices', 'customers', 'user_roles', 'role_permissions', 'users', 'roles', 'permissions',
    ):
        op.drop_table(table)
