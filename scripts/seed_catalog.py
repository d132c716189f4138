"""Load a starter test catalog and report formats.

Existing tests and formats are left untouched, so the script is safe to
re-run after admins have edited prices.

Usage:
    python scripts/seed_catalog.py
"""

import asyncio

from sqlalchemy import select

from labcenter.database import AsyncSessionLocal, engine
from labcenter.models.catalog import lab_tests, report_formats

STARTER_TESTS = [
    {"id": "CBC", "name": "Complete Blood Count", "cost": 350.0},
    {"id": "LFT", "name": "Liver Function Test", "cost": 600.0},
    {"id": "KFT", "name": "Kidney Function Test", "cost": 650.0},
    {"id": "FBS", "name": "Fasting Blood Sugar", "cost": 120.0},
    {"id": "HBA1C", "name": "Glycated Hemoglobin", "cost": 450.0},
    {"id": "TSH", "name": "Thyroid Stimulating Hormone", "cost": 300.0},
    {"id": "LIPID", "name": "Lipid Profile", "cost": 550.0},
]

STARTER_FORMATS = {
    "CBC": [
        {"name": "Hemoglobin", "unit": "g/dL", "normal_range": "13.5-17.5"},
        {"name": "WBC Count", "unit": "cells/mcL", "normal_range": "4000-11000"},
        {"name": "Platelet Count", "unit": "lakh/mcL", "normal_range": "1.5-4.5"},
    ],
    "FBS": [
        {"name": "Glucose (Fasting)", "unit": "mg/dL", "normal_range": "70-100"},
    ],
    "HBA1C": [
        {"name": "HbA1c", "unit": "%", "normal_range": "<5.7"},
    ],
    "TSH": [
        {"name": "TSH", "unit": "mIU/L", "normal_range": "0.4-4.0"},
    ],
    "LIPID": [
        {"name": "Total Cholesterol", "unit": "mg/dL", "normal_range": "<200"},
        {"name": "HDL Cholesterol", "unit": "mg/dL", "normal_range": ">40"},
        {"name": "LDL Cholesterol", "unit": "mg/dL", "normal_range": "<100"},
        {"name": "Triglycerides", "unit": "mg/dL", "normal_range": "<150"},
    ],
}


async def seed() -> None:
    """Insert the starter tests and formats that are missing."""
    async with AsyncSessionLocal() as db:
        existing_tests = set((await db.execute(select(lab_tests.c.id))).scalars().all())
        existing_formats = set((await db.execute(select(report_formats.c.test_id))).scalars().all())

        new_tests = [test for test in STARTER_TESTS if test["id"] not in existing_tests]
        if new_tests:
            await db.execute(lab_tests.insert(), new_tests)

        names = {test["id"]: test["name"] for test in STARTER_TESTS}
        new_formats = [
            {"test_id": test_id, "test_name": names[test_id], "parameters": parameters}
            for test_id, parameters in STARTER_FORMATS.items()
            if test_id not in existing_formats
        ]
        if new_formats:
            await db.execute(report_formats.insert(), new_formats)

        await db.commit()

    await engine.dispose()
    print(f"✓ Seeded {len(new_tests)} test(s) and {len(new_formats)} report format(s)")


if __name__ == "__main__":
    asyncio.run(seed())
