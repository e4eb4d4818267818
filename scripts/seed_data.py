#!/usr/bin/env python3
"""Seed data script for development database"""

import asyncio
import os
import sys
import uuid

from sqlalchemy import select

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from disastershield.db.database import AsyncSessionLocal, Base, engine
from disastershield.db.models import CapacityStatus, Contractor, Trade

SAMPLE_CONTRACTORS = [
    {
        "company_name": "Gulf Rapid Restore",
        "contact_name": "James Miller",
        "email": "james@gulfrapid.com",
        "phone": "+19415551212",
        "service_areas": ["FL", "Tampa", "Sarasota", "St. Petersburg"],
        "trades": [Trade.WATER_MITIGATION, Trade.MOLD],
        "calendly_url": "https://calendly.com/gulfrapid/inspection",
    },
    {
        "company_name": "Sunshine Restoration",
        "contact_name": "Maria Rodriguez",
        "email": "maria@sunshinerestoration.com",
        "phone": "+13055552345",
        "service_areas": ["FL", "Miami", "Fort Lauderdale", "West Palm Beach"],
        "trades": [Trade.WATER_MITIGATION, Trade.REBUILD, Trade.MOLD],
        "calendly_url": "https://calendly.com/sunshine-restoration",
    },
    {
        "company_name": "Storm Shield Contractors",
        "contact_name": "David Thompson",
        "email": "david@stormshield.com",
        "phone": "+17275553456",
        "service_areas": ["FL", "Tampa", "Clearwater", "Largo"],
        "trades": [Trade.ROOFING, Trade.REBUILD],
    },
    {
        "company_name": "Fire & Water Solutions",
        "contact_name": "Sarah Johnson",
        "email": "sarah@firewaterfl.com",
        "phone": "+18135554567",
        "service_areas": ["FL", "Tampa", "Brandon", "Riverview"],
        "trades": [Trade.WATER_MITIGATION, Trade.SMOKE_RESTORATION, Trade.REBUILD],
        "calendly_url": "https://calendly.com/firewater-solutions",
    },
    {
        "company_name": "Elite Mold Remediation",
        "contact_name": "Michael Chen",
        "email": "michael@elitemold.com",
        "phone": "+19545555678",
        "service_areas": ["FL", "Fort Lauderdale", "Hollywood", "Pembroke Pines"],
        "trades": [Trade.MOLD, Trade.WATER_MITIGATION],
    },
    {
        "company_name": "Texas Storm Recovery",
        "contact_name": "Robert Wilson",
        "email": "robert@txstormrecovery.com",
        "phone": "+14695556789",
        "service_areas": ["TX", "Dallas", "Fort Worth", "Plano"],
        "trades": [Trade.ROOFING, Trade.REBUILD],
        "calendly_url": "https://calendly.com/tx-storm-recovery",
    },
    {
        "company_name": "Golden State Restoration",
        "contact_name": "Jennifer Lee",
        "email": "jennifer@goldenstaterestore.com",
        "phone": "+14155557890",
        "service_areas": ["CA", "San Francisco", "Oakland", "San Jose"],
        "trades": [Trade.WATER_MITIGATION, Trade.REBUILD, Trade.SMOKE_RESTORATION],
    },
    {
        "company_name": "Empire State Contractors",
        "contact_name": "Anthony Russo",
        "email": "anthony@empirestatecontractors.com",
        "phone": "+12125558901",
        "service_areas": ["NY", "New York", "Brooklyn", "Queens"],
        "trades": [Trade.REBUILD, Trade.WATER_MITIGATION, Trade.MOLD],
        "calendly_url": "https://calendly.com/empire-state-contractors",
    },
    {
        "company_name": "Peach State Recovery",
        "contact_name": "Amanda Davis",
        "email": "amanda@peachstaterecovery.com",
        "phone": "+14045559012",
        "service_areas": ["GA", "Atlanta", "Marietta", "Alpharetta"],
        "trades": [Trade.WATER_MITIGATION, Trade.REBUILD],
    },
    {
        "company_name": "Coastal Cleanup Crew",
        "contact_name": "Brian Martinez",
        "email": "brian@coastalcleanup.com",
        "phone": "+19105550123",
        "service_areas": ["NC", "Wilmington", "Jacksonville", "Myrtle Beach"],
        "trades": [Trade.WATER_MITIGATION, Trade.MOLD],
        "calendly_url": "https://calendly.com/coastal-cleanup",
    },
    {
        "company_name": "Rapid Response Restoration",
        "contact_name": "Lisa Wang",
        "email": "lisa@rapidresponsefl.com",
        "phone": "+18635551234",
        "service_areas": ["FL", "Lakeland", "Winter Haven", "Bartow"],
        "trades": [Trade.WATER_MITIGATION, Trade.REBUILD],
    },
    {
        "company_name": "All-Pro Contractors",
        "contact_name": "Kevin Brown",
        "email": "kevin@allprocontractors.com",
        "phone": "+17865552345",
        "service_areas": ["FL", "Miami", "Homestead", "Kendall"],
        "trades": [Trade.REBUILD, Trade.ROOFING, Trade.GENERAL],
        "calendly_url": "https://calendly.com/allpro-contractors",
    },
]


async def seed_database():
    """Seed the database with sample contractors"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        try:
            print("🌱 Starting database seeding...")

            result = await session.execute(select(Contractor.company_name))
            existing = set(result.scalars().all())

            created = 0
            for contractor_data in SAMPLE_CONTRACTORS:
                if contractor_data["company_name"] in existing:
                    print(f"  Skipping {contractor_data['company_name']} (already present)")
                    continue

                session.add(
                    Contractor(
                        id=uuid.uuid4(),
                        company_name=contractor_data["company_name"],
                        contact_name=contractor_data["contact_name"],
                        email=contractor_data["email"],
                        phone=contractor_data["phone"],
                        calendly_url=contractor_data.get("calendly_url"),
                        service_areas=contractor_data["service_areas"],
                        trades=[trade.value for trade in contractor_data["trades"]],
                        capacity=CapacityStatus.ACTIVE,
                    )
                )
                created += 1

            await session.commit()
            print(f"✅ Seeded {created} contractors")

        except Exception as e:
            await session.rollback()
            print(f"❌ Error seeding database: {e}")
            raise


if __name__ == "__main__":
    asyncio.run(seed_database())
