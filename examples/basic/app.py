import asyncio
import sqlite3
from dataclasses import dataclass
from typing import List

from transactional_testing import Client, Executor, TransactionalHelper, query


@dataclass
class City:
    city_id: int
    name: str
    population: int


class CityExecutor(Executor):
    @query("SELECT * FROM city ORDER BY city_id")
    async def select_all_cities(self) -> List[City]:
        ...

    @query(
        """
        INSERT INTO city (city_id, name, population)
        VALUES ($city_id, $name, $population)
        """
    )
    async def insert_city(self, city_id: int, name: str, population: int):
        ...


async def run():
    client = Client(executors=[CityExecutor], db_path=":memory:")
    await client.connect()
    await client.execute_raw(
        "CREATE TABLE city ("
        "city_id INTEGER PRIMARY KEY, name TEXT NOT NULL, population INTEGER)"
    )
    await client.city.insert_city(city_id=1, name="Kabul", population=1780000)

    helper = TransactionalHelper(client)
    db = helper.get_proxy_client()

    await helper.start_new_transaction()
    await db.city.insert_city(city_id=2, name="Qandahar", population=237500)

    async def insert_twice(transaction_client):
        await transaction_client.city.insert_city(
            city_id=3, name="Herat", population=186800
        )
        await transaction_client.city.insert_city(
            city_id=3, name="Herat", population=186800
        )

    try:
        await db.transaction(insert_twice)
    except sqlite3.IntegrityError as e:
        print(f"Nested transaction rolled back: {e}")

    print(await db.city.select_all_cities())
    await helper.rollback_current_transaction()
    print(await db.city.select_all_cities())

    await client.disconnect()


asyncio.run(run())
