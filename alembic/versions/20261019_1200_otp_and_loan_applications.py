"""Add OTP challenges and loan applications tables

Revision ID: 3f9c2a71b8d4
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a71b8d4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ============================================================
    # OTP Challenges Table
    # ============================================================
    op.create_table('otp_challenges',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=False),
        sa.Column('otp_hash', sa.String(length=255), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False, server_default='SMS'),
        # Verification State
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default='false'),
        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('locked_until', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_otp_challenges_phone_number'), 'otp_challenges', ['phone_number'], unique=False)
    op.create_index(op.f('ix_otp_challenges_expires_at'), 'otp_challenges', ['expires_at'], unique=False)

    # ============================================================
    # Loan Applications Table
    # ============================================================
    op.create_table('loan_applications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=False),
        # Personal Information (FIN and address are ciphertext)
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('fin_encrypted', sa.String(length=512), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=False),
        sa.Column('address_encrypted', sa.String(length=2048), nullable=False),
        # Financial Profile
        sa.Column('employment_status', sa.String(length=20), nullable=False),
        sa.Column('monthly_income', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('existing_monthly_debt', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0.00'),
        # Consent
        sa.Column('terms_accepted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('privacy_accepted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('consent_timestamp', sa.DateTime(), nullable=True),
        # Loan Request
        sa.Column('requested_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('term_months', sa.Integer(), nullable=True),
        # Lifecycle and Decision
        sa.Column('status', sa.String(length=30), nullable=False, server_default='INFO_SUBMITTED'),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('decision', sa.String(length=20), nullable=True),
        sa.Column('approved_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('apr', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('reason_codes', sa.JSON(), nullable=False),
        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_applications_phone_number'), 'loan_applications', ['phone_number'], unique=False)
    op.create_index(op.f('ix_loan_applications_status'), 'loan_applications', ['status'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_loan_applications_status'), table_name='loan_applications')
    op.drop_index(op.f('ix_loan_applications_phone_number'), table_name='loan_applications')
    op.drop_table('loan_applications')

    op.drop_index(op.f('ix_otp_challenges_expires_at'), table_name='otp_challenges')
    op.drop_index(op.f('ix_otp_challenges_phone_number'), table_name='otp_challenges')
    op.drop_table('otp_challenges')
