"""Create payroll engine tables

Revision ID: 20260301_0900
Revises:
Create Date: 2026-03-01 09:00:00.000000

This migration creates the payroll engine schema:
- departments, employees: payroll population
- salary_grades, salary_grade_components: grade structure
- allowances, bonuses: earnings outside the grade
- deductions, deduction_assignments, deduction_assignment_events
- payroll_records, payroll_approval_entries: computed payroll and approval flow
- payments: payment ledger
- payroll_batch_summaries: one row per batch run
- audit_logs, notifications: transition side effects

Enum columns store member NAMES (SQLAlchemy Enum default).
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision = '20260301_0900'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


employment_status_enum = _enum('employmentstatus', 'ACTIVE', 'INACTIVE', 'SUSPENDED', 'TERMINATED', 'OFFBOARDING')
calculation_method_enum = _enum('calculationmethod', 'FIXED', 'PERCENTAGE', 'PROGRESSIVE')
approval_status_enum = _enum('approvalstatus', 'PENDING', 'APPROVED', 'REJECTED')
deduction_kind_enum = _enum('deductionkind', 'STATUTORY', 'VOLUNTARY')
deduction_category_enum = _enum(
    'deductioncategory',
    'TAX', 'PENSION', 'HOUSING', 'LOAN', 'TRANSPORT', 'COOPERATIVE', 'GENERAL', 'OTHER',
)
deduction_scope_enum = _enum('deductionscope', 'COMPANY_WIDE', 'DEPARTMENT', 'INDIVIDUAL')
deduction_duration_enum = _enum('deductionduration', 'ONGOING', 'ONE_OFF')
assignment_action_enum = _enum('assignmentaction', 'ASSIGNED', 'REMOVED')
bonus_type_enum = _enum(
    'bonustype', 'PERFORMANCE', 'THIRTEENTH_MONTH', 'SPECIAL', 'HOLIDAY', 'RETENTION', 'PROJECT',
)
payroll_status_enum = _enum(
    'payrollstatus',
    'DRAFT', 'PROCESSING', 'PENDING', 'APPROVED', 'REJECTED',
    'PENDING_PAYMENT', 'PAID', 'FAILED', 'CANCELLED', 'ARCHIVED',
)
payroll_frequency_enum = _enum('payrollfrequency', 'WEEKLY', 'BIWEEKLY', 'MONTHLY', 'QUARTERLY', 'ANNUAL')
approval_level_enum = _enum('approvallevel', 'DEPARTMENT_HEAD', 'HR_MANAGER', 'FINANCE_DIRECTOR', 'SUPER_ADMIN')
approval_action_enum = _enum(
    'approvalaction',
    'CREATE', 'START_PROCESSING', 'SUBMIT', 'APPROVE', 'REJECT',
    'INITIATE_PAYMENT', 'MARK_PAID', 'MARK_FAILED', 'CANCEL', 'ARCHIVE',
)
payment_status_enum = _enum('paymentstatus', 'PENDING', 'COMPLETED', 'FAILED', 'CANCELLED')
payment_method_enum = _enum('paymentmethod', 'BANK_TRANSFER', 'CASH', 'CHECK', 'MOBILE_MONEY', 'OTHER')
batch_scope_enum = _enum('batchscope', 'EMPLOYEE', 'DEPARTMENT', 'ORGANIZATION')
audit_action_enum = _enum(
    'auditaction',
    'PAYROLL_CREATED', 'PAYROLL_UPDATED', 'PAYROLL_TRANSITION', 'PAYMENT_INITIATED',
    'PAYMENT_COMPLETED', 'PAYMENT_FAILED', 'PAYMENT_CANCELLED', 'BATCH_PROCESSED',
)
notification_type_enum = _enum(
    'notificationtype',
    'PAYROLL_CREATED', 'PAYROLL_SUBMITTED', 'PAYROLL_APPROVED', 'PAYROLL_REJECTED',
    'PAYROLL_CANCELLED', 'PAYROLL_ARCHIVED', 'PAYMENT_PENDING', 'PAYMENT_COMPLETED',
    'PAYMENT_FAILED', 'BATCH_COMPLETED', 'INFO',
)

ALL_ENUMS = (
    employment_status_enum, calculation_method_enum, approval_status_enum,
    deduction_kind_enum, deduction_category_enum, deduction_scope_enum,
    deduction_duration_enum, assignment_action_enum, bonus_type_enum,
    payroll_status_enum, payroll_frequency_enum, approval_level_enum,
    approval_action_enum, payment_status_enum, payment_method_enum,
    batch_scope_enum, audit_action_enum, notification_type_enum,
)


def _id_column() -> sa.Column:
    return sa.Column('id', UUID(as_uuid=True), primary_key=True)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _audit_columns() -> list:
    return [
        sa.Column('created_by_id', UUID(as_uuid=True), nullable=True),
        sa.Column('updated_by_id', UUID(as_uuid=True), nullable=True),
    ]


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), server_default='0', nullable=False)


def _items(name: str) -> sa.Column:
    return sa.Column(name, JSONB, server_default=sa.text("'[]'::jsonb"), nullable=False)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    # ===========================================
    # DEPARTMENTS & EMPLOYEES
    # ===========================================
    op.create_table('departments',
        _id_column(),
        sa.Column('name', sa.String(150), nullable=False, unique=True),
        sa.Column('code', sa.String(30), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        *_timestamps(),
        *_audit_columns(),
    )

    op.create_table('employees',
        _id_column(),
        sa.Column('staff_code', sa.String(50), nullable=False, unique=True, index=True,
                  comment='Organization-assigned employee number'),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('department_id', UUID(as_uuid=True), sa.ForeignKey('departments.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('grade_level', sa.String(30), nullable=True, index=True),
        sa.Column('pay_frequency', sa.String(20), server_default='monthly', nullable=False),
        sa.Column('employment_status', employment_status_enum, server_default='ACTIVE', nullable=False),
        sa.Column('bank_name', sa.String(100), nullable=True),
        sa.Column('account_number', sa.String(20), nullable=True),
        sa.Column('account_name', sa.String(200), nullable=True),
        *_timestamps(),
        *_audit_columns(),
    )

    # ===========================================
    # SALARY GRADES
    # ===========================================
    op.create_table('salary_grades',
        _id_column(),
        sa.Column('level', sa.String(30), nullable=False, unique=True, index=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('basic_salary', sa.Numeric(15, 2), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        *_timestamps(),
        *_audit_columns(),
        sa.CheckConstraint('basic_salary >= 0', name='ck_salary_grades_salary_grade_basic_non_negative'),
    )

    op.create_table('salary_grade_components',
        _id_column(),
        sa.Column('salary_grade_id', UUID(as_uuid=True), sa.ForeignKey('salary_grades.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('calculation_method', calculation_method_enum, nullable=False),
        sa.Column('value', sa.Numeric(15, 2), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('sort_order', sa.Integer, server_default='0', nullable=False),
        *_timestamps(),
        sa.CheckConstraint('value >= 0', name='ck_salary_grade_components_grade_component_value_non_negative'),
    )

    # ===========================================
    # ALLOWANCES & BONUSES
    # ===========================================
    op.create_table('allowances',
        _id_column(),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('employee_id', UUID(as_uuid=True), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=True, index=True),
        sa.Column('department_id', UUID(as_uuid=True), sa.ForeignKey('departments.id', ondelete='CASCADE'), nullable=True, index=True),
        sa.Column('grade_level', sa.String(30), nullable=True),
        sa.Column('calculation_method', calculation_method_enum, server_default='FIXED', nullable=False),
        sa.Column('value', sa.Numeric(15, 2), nullable=False),
        sa.Column('base_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('approval_status', approval_status_enum, server_default='PENDING', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('effective_date', sa.Date, nullable=False),
        sa.Column('expiry_date', sa.Date, nullable=True),
        *_timestamps(),
        *_audit_columns(),
    )

    op.create_table('bonuses',
        _id_column(),
        sa.Column('employee_id', UUID(as_uuid=True), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('bonus_type', bonus_type_enum, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('calculation_method', calculation_method_enum, server_default='FIXED', nullable=False),
        sa.Column('value', sa.Numeric(15, 2), nullable=False),
        sa.Column('approval_status', approval_status_enum, server_default='PENDING', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('payment_date', sa.Date, nullable=False),
        *_timestamps(),
        *_audit_columns(),
    )

    # ===========================================
    # DEDUCTIONS
    # ===========================================
    op.create_table('deductions',
        _id_column(),
        sa.Column('name', sa.String(150), nullable=False, unique=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('kind', deduction_kind_enum, nullable=False),
        sa.Column('category', deduction_category_enum, server_default='GENERAL', nullable=False),
        sa.Column('scope', deduction_scope_enum, server_default='COMPANY_WIDE', nullable=False),
        sa.Column('department_id', UUID(as_uuid=True), sa.ForeignKey('departments.id', ondelete='CASCADE'), nullable=True, index=True),
        sa.Column('calculation_method', calculation_method_enum, nullable=False),
        sa.Column('value', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('tax_brackets', JSONB, nullable=True, comment='[{"min", "max", "rate"}]'),
        sa.Column('effective_date', sa.Date, nullable=False),
        sa.Column('expiry_date', sa.Date, nullable=True),
        sa.Column('duration', deduction_duration_enum, server_default='ONGOING', nullable=False),
        sa.Column('one_off_month', sa.Integer, nullable=True),
        sa.Column('one_off_year', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('is_mandatory', sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column('is_custom', sa.Boolean, server_default=sa.false(), nullable=False),
        *_timestamps(),
        *_audit_columns(),
        sa.CheckConstraint('value >= 0', name='ck_deductions_deduction_value_non_negative'),
        sa.CheckConstraint(
            "calculation_method != 'PERCENTAGE' OR value <= 100",
            name='ck_deductions_deduction_percentage_max_100',
        ),
        sa.CheckConstraint(
            "scope != 'DEPARTMENT' OR department_id IS NOT NULL",
            name='ck_deductions_deduction_department_scope_requires_department',
        ),
    )

    op.create_table('deduction_assignments',
        _id_column(),
        sa.Column('deduction_id', UUID(as_uuid=True), sa.ForeignKey('deductions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('employee_id', UUID(as_uuid=True), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('deduction_id', 'employee_id', name='uq_deduction_assignment'),
    )

    op.create_table('deduction_assignment_events',
        _id_column(),
        sa.Column('deduction_id', UUID(as_uuid=True), sa.ForeignKey('deductions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('employee_id', UUID(as_uuid=True), nullable=False),
        sa.Column('action', assignment_action_enum, nullable=False),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_timestamps(),
    )

    # ===========================================
    # PAYROLL RECORDS
    # ===========================================
    op.create_table('payroll_records',
        _id_column(),
        sa.Column('employee_id', UUID(as_uuid=True), sa.ForeignKey('employees.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('department_id', UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('salary_grade_id', UUID(as_uuid=True), sa.ForeignKey('salary_grades.id', ondelete='SET NULL'), nullable=True),
        sa.Column('batch_id', sa.String(50), nullable=True, index=True),

        # Period identity
        sa.Column('month', sa.Integer, nullable=False),
        sa.Column('year', sa.Integer, nullable=False),
        sa.Column('frequency', payroll_frequency_enum, nullable=False),
        sa.Column('period_start', sa.Date, nullable=False),
        sa.Column('period_end', sa.Date, nullable=False),

        # Earnings
        _money('basic_salary'),
        _money('overtime_amount'),
        _items('allowance_items'),
        _items('bonus_items'),
        _money('total_allowances'),
        _money('total_bonuses'),
        _money('gross_earnings'),

        # Statutory deductions
        _money('tax'),
        _money('pension'),
        _money('nhf'),
        _items('other_statutory_items'),
        _money('total_statutory'),

        # Voluntary deductions
        _items('loan_items'),
        _items('other_voluntary_items'),
        _items('department_items'),
        _money('total_voluntary'),

        _money('total_deductions'),
        _money('net_pay'),
        _items('warnings'),

        sa.Column('status', payroll_status_enum, server_default='DRAFT', nullable=False, index=True),

        # Payment details
        sa.Column('payment_method', payment_method_enum, nullable=True),
        sa.Column('payment_reference', sa.String(64), nullable=True, unique=True),
        sa.Column('payment_bank_name', sa.String(100), nullable=True),
        sa.Column('payment_account_number', sa.String(20), nullable=True),
        sa.Column('payment_account_name', sa.String(200), nullable=True),
        sa.Column('payment_notes', sa.Text, nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),

        *_timestamps(),
        *_audit_columns(),
        sa.UniqueConstraint('employee_id', 'month', 'year', 'frequency', name='uq_payroll_employee_period_frequency'),
        sa.CheckConstraint('month BETWEEN 1 AND 12', name='ck_payroll_records_payroll_month_range'),
    )

    op.create_table('payroll_approval_entries',
        _id_column(),
        sa.Column('payroll_id', UUID(as_uuid=True), sa.ForeignKey('payroll_records.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('level', approval_level_enum, nullable=True),
        sa.Column('status', payroll_status_enum, nullable=False),
        sa.Column('action', approval_action_enum, nullable=False),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('remarks', sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('payroll_id', 'sequence', name='uq_payroll_approval_sequence'),
    )

    # ===========================================
    # PAYMENTS
    # ===========================================
    op.create_table('payments',
        _id_column(),
        sa.Column('payroll_id', UUID(as_uuid=True), sa.ForeignKey('payroll_records.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('employee_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('status', payment_status_enum, nullable=False),
        sa.Column('method', payment_method_enum, server_default='BANK_TRANSFER', nullable=False),
        sa.Column('reference', sa.String(64), nullable=False, unique=True),
        sa.Column('processed_by_id', UUID(as_uuid=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('bank_name', sa.String(100), nullable=True),
        sa.Column('account_number', sa.String(20), nullable=True),
        sa.Column('account_name', sa.String(200), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('metadata', JSONB, nullable=True),
        *_timestamps(),
    )

    # ===========================================
    # BATCH SUMMARIES
    # ===========================================
    op.create_table('payroll_batch_summaries',
        _id_column(),
        sa.Column('batch_id', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('scope', batch_scope_enum, nullable=False),
        sa.Column('scope_target_id', UUID(as_uuid=True), nullable=True),
        sa.Column('month', sa.Integer, nullable=False),
        sa.Column('year', sa.Integer, nullable=False),
        sa.Column('frequency', payroll_frequency_enum, nullable=False),
        sa.Column('processed_by_id', UUID(as_uuid=True), nullable=False),
        sa.Column('processing_time_ms', sa.Integer, server_default='0', nullable=False),
        sa.Column('total_attempted', sa.Integer, server_default='0', nullable=False),
        sa.Column('processed', sa.Integer, server_default='0', nullable=False),
        sa.Column('skipped', sa.Integer, server_default='0', nullable=False),
        sa.Column('failed', sa.Integer, server_default='0', nullable=False),
        sa.Column('total_gross_pay', sa.Numeric(18, 2), server_default='0', nullable=False),
        sa.Column('total_deductions', sa.Numeric(18, 2), server_default='0', nullable=False),
        sa.Column('total_net_pay', sa.Numeric(18, 2), server_default='0', nullable=False),
        sa.Column('department_breakdown', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        _items('employee_details'),
        _items('warnings'),
        _items('errors'),
        *_timestamps(),
        sa.CheckConstraint(
            'processed + skipped + failed = total_attempted',
            name='ck_payroll_batch_summaries_batch_counts_consistent',
        ),
    )

    # ===========================================
    # AUDIT & NOTIFICATIONS
    # ===========================================
    op.create_table('audit_logs',
        _id_column(),
        sa.Column('action', audit_action_enum, nullable=False, index=True),
        sa.Column('entity_type', sa.String(100), nullable=False, index=True),
        sa.Column('entity_id', sa.String(100), nullable=False, index=True),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('details', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )

    op.create_table('notifications',
        _id_column(),
        sa.Column('recipient_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('notification_type', notification_type_enum, server_default='INFO', nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('payload', JSONB, nullable=True),
        sa.Column('is_read', sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_sent', sa.Boolean, server_default=sa.false(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('audit_logs')
    op.drop_table('payroll_batch_summaries')
    op.drop_table('payments')
    op.drop_table('payroll_approval_entries')
    op.drop_table('payroll_records')
    op.drop_table('deduction_assignment_events')
    op.drop_table('deduction_assignments')
    op.drop_table('deductions')
    op.drop_table('bonuses')
    op.drop_table('allowances')
    op.drop_table('salary_grade_components')
    op.drop_table('salary_grades')
    op.drop_table('employees')
    op.drop_table('departments')

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
