"""Script to initialize a local database.

Creates every table straight from the table metadata. Use ``scripts/migrate.py``
for PostgreSQL deployments; this is for SQLite and throwaway databases.

    python scripts/init_db.py          # create tables
    python scripts/init_db.py --seed   # also add a demo clinic, doctor and patient
"""

import asyncio
import sys
from datetime import time
from uuid import uuid4

from sqlalchemy import insert

from app.database import engine
from app.models import clinics, doctors, metadata, patients


async def seed(conn) -> None:
    """Insert one clinic with a weekday doctor and a patient."""
    clinic_id, doctor_id, patient_id = uuid4(), uuid4(), uuid4()

    await conn.execute(insert(clinics).values(id=clinic_id, name="Demo Clinic"))
    await conn.execute(
        insert(doctors).values(
            id=doctor_id,
            clinic_id=clinic_id,
            full_name="Dr. Demo",
            specialization="General Practice",
            available_days=["monday", "tuesday", "wednesday", "thursday", "friday"],
            start_time=time(9, 0),
            end_time=time(17, 0),
            slot_duration_minutes=30,
        )
    )
    await conn.execute(
        insert(patients).values(id=patient_id, clinic_id=clinic_id, full_name="Demo Patient")
    )

    print(f"  clinic:  {clinic_id}")
    print(f"  doctor:  {doctor_id}")
    print(f"  patient: {patient_id}")


async def init_db(with_seed: bool = False) -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        # Create all tables
        await conn.run_sync(metadata.create_all)

        print("✓ Database initialized successfully!")

        if with_seed:
            await seed(conn)
            print("✓ Demo data added")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db(with_seed="--seed" in sys.argv[1:]))
