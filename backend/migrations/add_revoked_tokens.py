"""
Migration: Add token revocation and audit tables.

Creates:
1. revoked_tokens - revoked token ids, kept until the token's own expiry
2. audit_log - append-only trail of Action Hub state changes

Also adds actor_type to action_item_logs so system-attributed entries
(passive escalation) can carry a NULL actor_id.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/disruption_hub"
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


def column_exists(conn, table_name: str, column_name: str) -> bool:
    """Check if a column exists on a table."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.columns
            WHERE table_name = :table_name AND column_name = :column_name
        )
    """), {"table_name": table_name, "column_name": column_name})
    return result.fetchone()[0]


def run_migration():
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        if table_exists(conn, "revoked_tokens"):
            print("revoked_tokens table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE revoked_tokens (
                    jti VARCHAR(36) PRIMARY KEY,
                    expires_at TIMESTAMP NOT NULL,
                    revoked_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_revoked_tokens_expires ON revoked_tokens(expires_at)
            """))
            print("Created revoked_tokens table")

        if table_exists(conn, "audit_log"):
            print("audit_log table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE audit_log (
                    id SERIAL PRIMARY KEY,
                    actor_id VARCHAR(36),
                    actor_email VARCHAR(255),
                    action VARCHAR(100) NOT NULL,
                    target_type VARCHAR(50) NOT NULL,
                    target_id VARCHAR(36),
                    detail TEXT,
                    event_metadata JSON,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("CREATE INDEX idx_audit_log_actor ON audit_log(actor_id)"))
            conn.execute(text("CREATE INDEX idx_audit_log_target ON audit_log(target_id)"))
            conn.execute(text("CREATE INDEX idx_audit_log_created ON audit_log(created_at)"))
            print("Created audit_log table")

        if table_exists(conn, "action_item_logs"):
            if column_exists(conn, "action_item_logs", "actor_type"):
                print("action_item_logs.actor_type already exists")
            else:
                conn.execute(text("""
                    ALTER TABLE action_item_logs
                    ADD COLUMN actor_type VARCHAR(10) NOT NULL DEFAULT 'USER'
                """))
                conn.execute(text("""
                    ALTER TABLE action_item_logs ALTER COLUMN actor_id DROP NOT NULL
                """))
                print("Added actor_type to action_item_logs")

        conn.commit()
        print("Migration complete!")


if __name__ == "__main__":
    run_migration()
