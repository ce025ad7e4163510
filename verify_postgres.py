import asyncio
import sys

import asyncpg

from backend.app.core.config import settings

# asyncpg wants a plain postgresql:// DSN
db_url = settings.database_url.replace("+asyncpg", "")

print(f"Testing connection to: {db_url}")

async def check_db():
    try:
        conn = await asyncpg.connect(db_url)
    except (OSError, asyncpg.PostgresError) as e:
        print(f"❌ Connection Failed: {e}")
        return 1

    try:
        tables = await conn.fetch(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'public'"
        )
        names = sorted(t["table_name"] for t in tables)
        print("✅ Connection Successful!")
        print(f"Tables: {', '.join(names) or '(none yet, start the app once)'}")
    finally:
        await conn.close()
    return 0

if __name__ == "__main__":
    sys.exit(asyncio.run(check_db()))
