import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

MIGRATIONS_DIR = Path(__file__).resolve().parent / "supabase" / "migrations"


def _get_db_url() -> str:
    """
    数据库连接串

    中文注释:
    - 只从环境变量读取（DATABASE_URL / SUPABASE_DB_URL），严禁把凭据写进仓库。
    """

    for key in ("DATABASE_URL", "SUPABASE_DB_URL"):
        raw = (os.environ.get(key) or "").strip()
        if raw:
            return raw
    return ""


def run_migrations() -> int:
    load_dotenv()
    db_url = _get_db_url()
    if not db_url:
        print("❌ DATABASE_URL is not configured")
        return 1

    files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    if not files:
        print(f"⚠️ No migrations found in {MIGRATIONS_DIR}")
        return 0

    print("🚀 Connecting to database...")
    conn = psycopg2.connect(db_url)
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            for path in files:
                print(f"📄 Applying {path.name}...")
                cur.execute(path.read_text(encoding="utf-8"))
    except psycopg2.Error as e:
        print(f"❌ Migration failed: {e}")
        return 1
    finally:
        conn.close()

    print("✅ Database migration completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(run_migrations())
