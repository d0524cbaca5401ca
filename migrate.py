"""
Run one-off database migrations without starting the web server.

Usage:
  python migrate.py

This script uses Alembic to apply the schema migrations in migrations/.
"""

import os
import sys


def main():
    # Keep app startup hooks disabled; run migration explicitly below.
    os.environ['RUN_STARTUP_DDL'] = '0'
    os.environ['RUN_STARTUP_BOOTSTRAP'] = '0'

    from alembic import command
    from alembic.config import Config
    from dotenv import load_dotenv

    load_dotenv()
    if not (os.environ.get('DATABASE_URL') or '').strip():
        print("✗ DATABASE_URL not found. Set it in .env", file=sys.stderr)
        sys.exit(1)

    config = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), 'alembic.ini'))
    try:
        print("Applying database migrations...")
        command.upgrade(config, 'head')
        print("✓ Migrations completed successfully.")
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
