#
# Copyright 2025 The NoLongerEvil Local contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Database schema for NoLongerEvil Local."""

import sqlite3

# Supported schema version for this codebase. A database reporting a higher
# user_version is refused.
SUPPORTED_SCHEMA_VERSION = 2

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS accessories (
    uuid TEXT PRIMARY KEY,
    aid INTEGER UNIQUE,
    serial_number TEXT NOT NULL,
    display_name TEXT NOT NULL,
    context TEXT,
    first_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_accessories_serial ON accessories(serial_number);
"""


def _apply_script_tolerant(conn, script: str):
    # Execute statement-by-statement; index creation may reference columns an
    # older database does not have yet, so those are retried after migrating.
    for stmt in [s.strip() for s in script.split(';') if s.strip()]:
        try:
            conn.execute(stmt)
        except sqlite3.OperationalError:
            continue


def ensure_schema_and_migrate(db_path: str):
    """Ensure the schema exists and run DB migrations using PRAGMA user_version.

    Migration to user_version 2 adds the `aid` column to `accessories` and
    assigns accessory ids to rows cached by version 1.
    """
    conn = sqlite3.connect(db_path)
    try:
        current_version = conn.execute("PRAGMA user_version").fetchone()[0]
        if current_version > SUPPORTED_SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version ({current_version}) is newer than supported ({SUPPORTED_SCHEMA_VERSION})")

        _apply_script_tolerant(conn, DB_SCHEMA)

        if current_version < 2:
            conn.execute("BEGIN IMMEDIATE")
            try:
                columns = [row[1] for row in conn.execute("PRAGMA table_info(accessories)")]
                if 'aid' not in columns:
                    conn.execute("ALTER TABLE accessories ADD COLUMN aid INTEGER")

                next_aid = (conn.execute("SELECT MAX(aid) FROM accessories").fetchone()[0] or 1) + 1
                for (uuid_val,) in conn.execute("SELECT uuid FROM accessories WHERE aid IS NULL ORDER BY rowid").fetchall():
                    conn.execute("UPDATE accessories SET aid = ? WHERE uuid = ?", (next_aid, uuid_val))
                    next_aid += 1

                conn.execute("PRAGMA user_version = 2")
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        # Re-run now that all columns exist
        _apply_script_tolerant(conn, DB_SCHEMA)
        conn.commit()
    finally:
        conn.close()
