"""
Script to (re)create the detected_subscriptions table.

Run with --drop to discard existing detections first.
WARNING: --drop deletes every stored detection for every user!
"""
import os
import sys

from sqlalchemy import inspect

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import Base, engine  # noqa: E402
from app.models import DetectedSubscription  # noqa: E402


def reset_database(drop: bool = False):
    """Create the detection tables, optionally dropping them first."""
    table = DetectedSubscription.__table__

    if drop:
        print("⚠️  WARNING: This will delete all stored detections!")
        engine.dispose()
        table.drop(bind=engine, checkfirst=True)
        print(f"✓ Dropped {table.name}")

    Base.metadata.create_all(bind=engine)
    print("✓ Tables created")

    inspector = inspect(engine)
    print("\nIndexes on detected_subscriptions:")
    for index in inspector.get_indexes(table.name):
        print(f"  - {index['name']}: {', '.join(index['column_names'])}")

    print("\n✅ Database ready for detection runs")


if __name__ == "__main__":
    reset_database(drop="--drop" in sys.argv[1:])
