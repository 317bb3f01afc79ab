"""
Database Initialization Script

Creates the controllers table for the ATC License Dashboard and reports
how many records it holds.
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from record_store import ControllerStore, PersistenceError

# Load environment variables
load_dotenv()


def verify_connection(store: ControllerStore) -> bool:
    """Verify the database is reachable."""
    try:
        count = store.count()
        print("✅ Database connection successful!")
        print(f"   controllers table exists with {count} records")
        return True
    except PersistenceError as e:
        print(f"❌ Connection failed: {e}")
        return False


def main():
    """Main initialization function."""
    print("="*60)
    print("ATC License Dashboard - Database Initialization")
    print("="*60)

    print("\n📋 Checking environment variables...")
    if os.getenv("DATABASE_URL"):
        print(f"   DATABASE_URL: {os.getenv('DATABASE_URL')[:40]}...")
    else:
        print("   DATABASE_URL not set, using local SQLite file")

    try:
        store = ControllerStore()
    except PersistenceError as e:
        print(f"\n❌ Could not create schema: {e}")
        sys.exit(1)

    print(f"\n🔌 Testing {store.database_url} ...")
    if verify_connection(store):
        print("\n✅ Database ready!")
    else:
        sys.exit(1)


if __name__ == "__main__":
    main()
