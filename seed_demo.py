"""
Seed a demo catalog: one company, its manager, one event with payment
settings, and a couple of wristbands.

  DATABASE_URL=sqlite:///./wristpass.db python seed_demo.py
  AUTH_BACKEND=static AUTH_STATIC_TOKENS=manager-token=<manager id>,... \
      uvicorn wristpass.server:app
"""
import argparse
import asyncio
import os

from loguru import logger
from sqlalchemy import insert

from wristpass.helpers import new_id
from wristpass.infra.log import setup_logging
from wristpass.infra.sql import open_database
from wristpass.model.db import (
    Company, Event, PaymentSettings, UserCompany, create_schema
)
from wristpass.provisioning import provision


async def seed(database_url: str, units: int) -> dict:
    database = open_database(database_url)
    ids = {
        "company_id": new_id(),
        "manager_id": new_id(),
        "event_id": new_id(),
    }
    async with database.engine.begin() as conn:
        await create_schema(conn)
        await conn.execute(insert(Company).values(
            id=ids["company_id"], name="Demo Produções"
        ))
        await conn.execute(insert(UserCompany).values(
            user_id=ids["manager_id"], company_id=ids["company_id"],
            role="owner",
        ))
        await conn.execute(insert(Event).values(
            id=ids["event_id"], company_id=ids["company_id"],
            user_id=ids["manager_id"], title="Demo Festival",
        ))
        await conn.execute(insert(PaymentSettings).values(
            id=new_id(), company_id=ids["company_id"],
            api_key="demo-key", api_token="demo-token",
        ))

    async with database.open() as db:
        for code, access_type, price in (("VIP", "vip", 250.0),
                                         ("PISTA", "general", 90.0)):
            res = await provision(
                db,
                requestor_id=ids["manager_id"],
                event_id=ids["event_id"],
                company_id=ids["company_id"],
                base_code=code,
                access_type=access_type,
                price=price,
                quantity=units,
            )
            ids[f"ticket_type_{code.lower()}"] = res.ticket_type_id

    await database.dispose()
    return ids


def main():
    ap = argparse.ArgumentParser(description="Seed a demo catalog")
    ap.add_argument("--database-url",
                    default=os.environ.get("DATABASE_URL",
                                           "sqlite:///./wristpass.db"))
    ap.add_argument("--units", type=int, default=100,
                    help="Units per wristband")
    args = ap.parse_args()

    setup_logging()
    ids = asyncio.run(seed(args.database_url, args.units))
    for k, v in ids.items():
        logger.info("{:<22} {}", k, v)
    print(f"✅ demo catalog seeded; event {ids['event_id']}")


if __name__ == "__main__":
    main()
