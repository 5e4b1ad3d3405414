#!/usr/bin/env python3
import asyncio, sys
from config.logging_config import configure
from config.app_config import settings
from telemetry_engine.core.patterns import EngineEventBus
from telemetry_engine.drivers import DriverRegistry
from telemetry_engine.engine import Engines
from telemetry_engine.services import DeviceCommandService, MemoryStores, load_seed


async def async_main():
    configure()
    stores = load_seed(settings.SEED_FILE) if settings.SEED_FILE else MemoryStores()

    registry = DriverRegistry()
    registry.initialize(stores.driver_definitions)

    engines = Engines(
        registry,
        datasource_store=stores.datasources,
        device_store=stores.devices,
        reading_store=stores.readings,
        device_state_store=stores.device_states,
        command_service=DeviceCommandService(stores.commands),
        poll_interval_ms=settings.ENGINE_POLL_INTERVAL_MS,
    )
    # datasource edits are published here by whoever owns the stores
    events = EngineEventBus()
    await events.subscribe(engines)
    await events.start()

    if settings.ENGINE_AUTOSTART:
        await engines.load_and_start_engines()
    engines.start_scheduler()
    try:
        # keep process alive
        while True:
            await asyncio.sleep(3600)
    finally:
        await events.stop()
        await engines.shutdown()

if __name__ == "__main__":
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        sys.exit("🌙  graceful shutdown")
