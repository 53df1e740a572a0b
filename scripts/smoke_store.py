import asyncio

from discord_invites.services.kv_store import SqliteKVStore


async def main():
    store = SqliteKVStore('./data/invites.db')
    await store.init_db()
    await store.put('discord:invite:smoke', {'uuid': 'smoke', 'code': 'SMOKE'}, ttl_seconds=60)
    value = await store.get('discord:invite:smoke')
    print('STORE_SMOKE_RESULT:', value)
    await store.delete('discord:invite:smoke')

if __name__ == '__main__':
    asyncio.run(main())
