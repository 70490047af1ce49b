"""
Migration: Add no-show ledger tables.

Creates 4 tables:
1. rating_adjustments - append-only penalty / recovery rows
2. recovery_streaks - per-user attended-while-in-debt counter
3. attendance_records - per-(user, match) marker so streaks advance once
4. absence_notices - advance notices that excuse a no-show

The unique constraints are the idempotence guards: a repeated or concurrent
pass inserts-or-ignores against them.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/matchday_ledger"
)


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def type_exists(conn, type_name: str) -> bool:
    result = conn.execute(text("""
        SELECT EXISTS (SELECT FROM pg_type WHERE typname = :type_name)
    """), {"type_name": type_name})
    return result.fetchone()[0]


def run_migration():
    """Create all no-show ledger tables."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # Enum values are the member names, as SQLAlchemy stores them
        if not type_exists(conn, "adjustmentkind"):
            conn.execute(text("CREATE TYPE adjustmentkind AS ENUM ('PENALTY', 'RECOVERY')"))
            print("Created adjustmentkind type")

        # =================================================================
        # TABLE 1: rating_adjustments
        # =================================================================
        if table_exists(conn, "rating_adjustments"):
            print("rating_adjustments table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE rating_adjustments (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL,
                    match_id VARCHAR(36) NOT NULL,
                    kind adjustmentkind NOT NULL,
                    magnitude NUMERIC(10, 2) NOT NULL CHECK (magnitude > 0),
                    details JSON,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_adjustment_user_match_kind UNIQUE (user_id, match_id, kind)
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_adjustment_user ON rating_adjustments(user_id)
            """))
            conn.execute(text("""
                CREATE INDEX idx_adjustment_match ON rating_adjustments(match_id)
            """))
            print("Created rating_adjustments table")

        # =================================================================
        # TABLE 2: recovery_streaks
        # =================================================================
        if table_exists(conn, "recovery_streaks"):
            print("recovery_streaks table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE recovery_streaks (
                    user_id VARCHAR(36) PRIMARY KEY,
                    streak INTEGER NOT NULL DEFAULT 0 CHECK (streak >= 0),
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            print("Created recovery_streaks table")

        # =================================================================
        # TABLE 3: attendance_records
        # =================================================================
        if table_exists(conn, "attendance_records"):
            print("attendance_records table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE attendance_records (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL,
                    match_id VARCHAR(36) NOT NULL,
                    attended BOOLEAN NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_attendance_user_match UNIQUE (user_id, match_id)
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_attendance_user ON attendance_records(user_id)
            """))
            print("Created attendance_records table")

        # =================================================================
        # TABLE 4: absence_notices
        # =================================================================
        if table_exists(conn, "absence_notices"):
            print("absence_notices table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE absence_notices (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL,
                    match_id VARCHAR(36) NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
                    reason TEXT,
                    found_replacement BOOLEAN DEFAULT FALSE,
                    notified_in_time BOOLEAN DEFAULT FALSE,
                    hours_before_match DOUBLE PRECISION,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_notice_user_match ON absence_notices(user_id, match_id)
            """))
            print("Created absence_notices table")

        conn.commit()
        print("No-show ledger migration complete")


if __name__ == "__main__":
    run_migration()
