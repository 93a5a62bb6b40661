"""
Create Contact Table Migration

Creates the contact table used by identity reconciliation, with the
indexes backing the email/phone match and the cluster load by linked_id.
Safe to run repeatedly.
"""

import asyncio
import logging

from sqlalchemy import text

from database.connection import engine

logger = logging.getLogger(__name__)

STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS contact (
        id SERIAL PRIMARY KEY,
        phone_number VARCHAR(50),
        email VARCHAR(255),
        linked_id INTEGER,
        link_precedence VARCHAR(10) NOT NULL DEFAULT 'primary',
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMP WITH TIME ZONE,
        CONSTRAINT ck_contact_precedence_link CHECK (
            (link_precedence = 'primary' AND linked_id IS NULL) OR
            (link_precedence = 'secondary' AND linked_id IS NOT NULL)
        )
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_contact_email ON contact (email)",
    "CREATE INDEX IF NOT EXISTS ix_contact_phone_number ON contact (phone_number)",
    "CREATE INDEX IF NOT EXISTS ix_contact_linked_id ON contact (linked_id)",
    "CREATE INDEX IF NOT EXISTS ix_contact_precedence_created ON contact (link_precedence, created_at)",
]


async def create_contact_table():
    """Create the contact table and its indexes."""
    if engine.dialect.name != "postgresql":
        raise RuntimeError(
            f"This migration targets PostgreSQL, got {engine.dialect.name}; "
            "other backends are bootstrapped by init_db()"
        )

    async with engine.begin() as conn:
        for statement in STATEMENTS:
            await conn.execute(text(statement))

    logger.info("Contact table migration complete")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(create_contact_table())
