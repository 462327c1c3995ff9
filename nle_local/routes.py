#
# Copyright 2025 The NoLongerEvil Local contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""FastAPI route handlers for NoLongerEvil Local."""

import asyncio
import json
import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, status
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .__version__ import __version__
from .homekit_uuids import enhance_accessory_data, get_characteristic_name, resolve_characteristic
from .registry import CharacteristicNotWritable

# Configure logging
logger = logging.getLogger(__name__)

# Security
security = HTTPBearer(auto_error=False)

KEEPALIVE_INTERVAL = 90


def load_api_keys() -> set:
    """API keys from NLE_API_KEYS (space-separated). Empty disables authentication."""
    raw = os.environ.get('NLE_API_KEYS', '').strip()
    return set(key.strip() for key in raw.split() if key.strip())


def get_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """
    Validate API key from Authorization header.

    If no API keys are configured, authentication is disabled.

    Raises:
        HTTPException 401 if authentication fails
    """
    api_keys = load_api_keys()
    if not api_keys:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials not in api_keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def create_app():
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="NoLongerEvil Local",
        description="HomeKit-style accessories for NoLongerEvil thermostats over MQTT",
        version=__version__
    )

    if load_api_keys():
        logger.info("API authentication enabled")
    else:
        logger.info("API authentication disabled (no NLE_API_KEYS configured)")

    return app


def register_routes(app: FastAPI, get_platform):
    """Register all API routes.

    Args:
        app: FastAPI application instance
        get_platform: Callable that returns the current ThermostatPlatform
    """

    def require_platform():
        platform = get_platform()
        if not platform:
            raise HTTPException(status_code=503, detail="Platform not initialized")
        return platform

    def require_accessory(platform, serial: str):
        accessory = platform.registry.find_by_serial(serial)
        if accessory is None:
            raise HTTPException(status_code=404, detail=f"Accessory {serial} not found")
        return accessory

    def require_characteristic(accessory, characteristic: str):
        char_type = resolve_characteristic(characteristic)
        char = accessory.find_characteristic(char_type) if char_type else None
        if char is None:
            raise HTTPException(status_code=404, detail=f"Characteristic {characteristic} not found")
        return char

    @app.get("/api", tags=["Info"])
    async def api_info(api_key: Optional[str] = Depends(get_api_key)):
        """API root with navigation."""
        return {
            "service": "NoLongerEvil Local",
            "version": __version__,
            "documentation": "/docs",
            "endpoints": {
                "status": "/status",
                "accessories": "/accessories",
                "thermostats": "/thermostats",
                "events": "/events",
            }
        }

    @app.get("/status", tags=["Status"])
    async def get_status(api_key: Optional[str] = Depends(get_api_key)):
        """Get overall system status."""
        platform = require_platform()
        return {
            "status": "connected" if platform.transport.connected else "disconnected",
            "version": __version__,
            **platform.status(),
        }

    @app.get("/accessories", tags=["Accessories"])
    async def get_accessories(enhanced: bool = True, api_key: Optional[str] = Depends(get_api_key)):
        """
        Get all accessories and their characteristics.

        Args:
            enhanced: If True, include human-readable names for UUIDs (default: True)
        """
        platform = require_platform()
        accessories = []
        for accessory in platform.registry.all():
            # Read through the get hooks so defaults are filled in
            for service in accessory.services:
                for char in service.characteristics:
                    char.get_value()
            accessories.append(accessory.to_dict())

        if enhanced:
            return {"accessories": enhance_accessory_data(accessories), "enhanced": True}
        return {"accessories": accessories, "enhanced": False}

    @app.get("/accessories/{serial}", tags=["Accessories"])
    async def get_accessory(serial: str, enhanced: bool = True, api_key: Optional[str] = Depends(get_api_key)):
        """Get one accessory by device serial."""
        platform = require_platform()
        accessory = require_accessory(platform, serial)
        for service in accessory.services:
            for char in service.characteristics:
                char.get_value()

        data = accessory.to_dict()
        if enhanced:
            return {"accessory": enhance_accessory_data([data])[0], "enhanced": True}
        return {"accessory": data, "enhanced": False}

    @app.get("/accessories/{serial}/characteristics/{characteristic}", tags=["Accessories"])
    async def get_characteristic(serial: str, characteristic: str, api_key: Optional[str] = Depends(get_api_key)):
        """Read a characteristic by UUID or name (e.g. TargetTemperature)."""
        platform = require_platform()
        accessory = require_accessory(platform, serial)
        char = require_characteristic(accessory, characteristic)
        return {
            "serial_number": serial,
            "characteristic": get_characteristic_name(char.type),
            "type": char.type,
            "value": char.get_value(),
        }

    @app.put("/accessories/{serial}/characteristics/{characteristic}", tags=["Accessories"])
    async def set_characteristic(serial: str, characteristic: str, value: str, api_key: Optional[str] = Depends(get_api_key)):
        """
        Write a characteristic by UUID or name, as a HomeKit controller would.

        The command is published to the thermostat without waiting for it to
        confirm; the reported state follows once the device publishes it.
        """
        platform = require_platform()
        accessory = require_accessory(platform, serial)
        char = require_characteristic(accessory, characteristic)

        try:
            char.set_value(value)
        except CharacteristicNotWritable as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid value for {char.name}: {e}")

        logger.info(f"{accessory.display_name}: set {char.name} to {char.value}")
        return {
            "success": True,
            "serial_number": serial,
            "characteristic": char.name,
            "value": char.value,
        }

    @app.get("/thermostats", tags=["Thermostats"])
    async def get_thermostats(api_key: Optional[str] = Depends(get_api_key)):
        """
        Get all thermostats with simplified state.

        State Field Reference:
            mode: 0=Off, 1=Heat, 2=Cool, 3=Auto (TargetHeatingCoolingState)
            cur_heating: 0=Off, 1=Heating, 2=Cooling (CurrentHeatingCoolingState)
            device_mode: the thermostat's own mode string (off/heat/cool/range)
        """
        platform = require_platform()
        return {"thermostats": platform.thermostats()}

    @app.get("/events", tags=["Events"])
    async def get_events(api_key: Optional[str] = Depends(get_api_key)):
        """
        Server-Sent Events (SSE) endpoint for characteristic changes.

        Event Types:

        1. Characteristic change:
           {
               "type": "characteristic",
               "aid": 2,
               "iid": 9,
               "serial_number": "02AA01AC...",
               "display_name": "Hallway",
               "characteristic": "CurrentTemperature",
               "value": 21.5,
               "previous_value": 21.0,
               "timestamp": 1730477890.123
           }

        2. Keepalive (every 90 seconds without other traffic):
           {"type": "keepalive", "timestamp": 1730477890.123}
        """
        platform = require_platform()

        async def event_publisher():
            client_queue = asyncio.Queue()
            platform.registry.event_listeners.append(client_queue)
            try:
                while True:
                    try:
                        event_data = await asyncio.wait_for(client_queue.get(), timeout=KEEPALIVE_INTERVAL)
                    except asyncio.TimeoutError:
                        keepalive_obj = {'type': 'keepalive', 'timestamp': time.time()}
                        yield f"data: {json.dumps(keepalive_obj)}\n\n"
                        continue

                    if event_data is None:
                        logger.debug("SSE stream received shutdown signal")
                        break
                    yield event_data
            except asyncio.CancelledError:
                logger.debug("SSE stream cancelled")
            finally:
                if client_queue in platform.registry.event_listeners:
                    platform.registry.event_listeners.remove(client_queue)

        return StreamingResponse(
            event_publisher(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
        )
