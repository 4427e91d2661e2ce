"""unique callsigns per department rank, prefixed open keys

Revision ID: 202610200002
Revises: 202610190001
Create Date: 2026-10-20
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610200002"
down_revision = "202610190001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_unique_constraint(
        "uq_memberships_department_rank_callsign",
        "memberships",
        ["department_code", "rank_name", "callsign"],
    )

    bind = op.get_bind()
    bind.execute(
        sa.text(
            """
            UPDATE applications
            SET open_key = 'dept:' || user_id || ':' || department_code
            WHERE open_key IS NOT NULL AND department_code IS NOT NULL
            """
        )
    )
    bind.execute(
        sa.text(
            """
            UPDATE applications
            SET open_key = 'form:' || user_id || ':' || form_id
            WHERE open_key IS NOT NULL AND department_code IS NULL
            """
        )
    )


def downgrade() -> None:
    bind = op.get_bind()
    bind.execute(
        sa.text(
            """
            UPDATE applications
            SET open_key = user_id || ':' || department_code
            WHERE open_key IS NOT NULL AND department_code IS NOT NULL
            """
        )
    )
    bind.execute(
        sa.text(
            """
            UPDATE applications
            SET open_key = user_id || '::' || form_id
            WHERE open_key IS NOT NULL AND department_code IS NULL
            """
        )
    )

    op.drop_constraint("uq_memberships_department_rank_callsign", "memberships", type_="unique")
