import sys
import os
import asyncio

# Add package to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dispatch_console.core.config import get_settings
from dispatch_console.services.record_store import SupabaseRecordStore, get_record_store
from dispatch_console.services.session_state import RedisSessionStorage, get_session_storage


async def main():
    print("Verifying setup...")
    settings = get_settings()
    print(f"Backend URL: {settings.backend_base_url}")
    print(f"Realtime URL: {settings.realtime_url or '(disabled)'}")
    print(f"Redis URL: {settings.redis_url}")

    storage = await get_session_storage()
    if isinstance(storage, RedisSessionStorage):
        try:
            await storage.client.ping()
            print("Redis connection successful!")
        except Exception as e:
            print(f"Redis connection failed: {e}")
    else:
        print("Using in-memory session storage.")

    store = await get_record_store()
    if isinstance(store, SupabaseRecordStore):
        for table in (settings.table_placed_orders, settings.table_dispatch):
            try:
                rows = await store.select(table, columns="order_id", limit=1)
                print(f"Table {table}: reachable ({len(rows)} sample row)")
            except Exception as e:
                print(f"Table {table}: {e}")
    else:
        print("Using in-memory record store.")


if __name__ == "__main__":
    asyncio.run(main())
