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

"""Accessory registry: HomeKit-shaped accessories, characteristic hooks and change events."""

import asyncio
import json
import logging
import math
import sqlite3
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from aiohomekit.model.characteristics import CharacteristicsTypes

from .database import ensure_schema_and_migrate
from .homekit_uuids import get_characteristic_name

logger = logging.getLogger(__name__)

# Stable accessory UUIDs are derived from the device serial in this namespace
ACCESSORY_NAMESPACE = uuid.UUID('6f1e3c52-9a0b-4a57-8f43-1b6c2d7e9a10')

# aid 1 is the bridge itself
FIRST_ACCESSORY_AID = 2

PERM_READ = 'pr'
PERM_WRITE = 'pw'
PERM_EVENTS = 'ev'

# char_type -> (format, perms, unit)
CHARACTERISTIC_META = {
    CharacteristicsTypes.NAME: ('string', [PERM_READ], None),
    CharacteristicsTypes.MANUFACTURER: ('string', [PERM_READ], None),
    CharacteristicsTypes.MODEL: ('string', [PERM_READ], None),
    CharacteristicsTypes.SERIAL_NUMBER: ('string', [PERM_READ], None),
    CharacteristicsTypes.TEMPERATURE_CURRENT: ('float', [PERM_READ, PERM_EVENTS], 'celsius'),
    CharacteristicsTypes.TEMPERATURE_TARGET: ('float', [PERM_READ, PERM_WRITE, PERM_EVENTS], 'celsius'),
    CharacteristicsTypes.TEMPERATURE_HEATING_THRESHOLD: ('float', [PERM_READ, PERM_WRITE, PERM_EVENTS], 'celsius'),
    CharacteristicsTypes.TEMPERATURE_COOLING_THRESHOLD: ('float', [PERM_READ, PERM_WRITE, PERM_EVENTS], 'celsius'),
    CharacteristicsTypes.HEATING_COOLING_CURRENT: ('uint8', [PERM_READ, PERM_EVENTS], None),
    CharacteristicsTypes.HEATING_COOLING_TARGET: ('uint8', [PERM_READ, PERM_WRITE, PERM_EVENTS], None),
    CharacteristicsTypes.TEMPERATURE_UNITS: ('uint8', [PERM_READ, PERM_WRITE, PERM_EVENTS], None),
    CharacteristicsTypes.ACTIVE: ('uint8', [PERM_READ, PERM_WRITE, PERM_EVENTS], None),
    CharacteristicsTypes.OCCUPANCY_DETECTED: ('uint8', [PERM_READ, PERM_EVENTS], None),
}

# Constraints on user writes, HomeKit defaults. Device-side updates are not checked.
CHARACTERISTIC_LIMITS = {
    CharacteristicsTypes.TEMPERATURE_TARGET: {'minValue': 10.0, 'maxValue': 38.0},
    CharacteristicsTypes.TEMPERATURE_COOLING_THRESHOLD: {'minValue': 10.0, 'maxValue': 35.0},
    CharacteristicsTypes.TEMPERATURE_HEATING_THRESHOLD: {'minValue': 0.0, 'maxValue': 25.0},
    CharacteristicsTypes.HEATING_COOLING_TARGET: {'valid-values': [0, 1, 2, 3]},
    CharacteristicsTypes.TEMPERATURE_UNITS: {'valid-values': [0, 1]},
    CharacteristicsTypes.ACTIVE: {'valid-values': [0, 1]},
}

_TRUE_STRINGS = {'true', '1', 'on', 'yes'}
_FALSE_STRINGS = {'false', '0', 'off', 'no'}


class CharacteristicNotWritable(Exception):
    """Raised when a set is attempted on a characteristic without write permission."""


def check_limits(limits: Dict[str, Any], value: Any):
    """Raise ValueError when value is outside minValue/maxValue or not a valid value."""
    if 'valid-values' in limits and value not in limits['valid-values']:
        raise ValueError(f"{value!r} is not one of {limits['valid-values']}")
    if 'minValue' in limits and value < limits['minValue']:
        raise ValueError(f"{value!r} is below the minimum {limits['minValue']}")
    if 'maxValue' in limits and value > limits['maxValue']:
        raise ValueError(f"{value!r} is above the maximum {limits['maxValue']}")


def coerce_value(fmt: str, value: Any) -> Any:
    """Coerce a value (possibly a query string) to a characteristic format.

    Raises ValueError when the value cannot be represented.
    """
    if fmt == 'float':
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"Not a finite number: {value!r}")
        return number
    if fmt == 'bool':
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ValueError(f"Not a boolean: {value!r}")
        return bool(value)
    if fmt in ('uint8', 'int'):
        number = float(value) if isinstance(value, str) else value
        if isinstance(number, float) and not number.is_integer():
            raise ValueError(f"Not an integer: {value!r}")
        return int(number)
    return str(value)


class Characteristic:
    """A single characteristic with optional get/set hooks."""

    def __init__(self, service: 'Service', char_type: str, iid: int):
        fmt, perms, unit = CHARACTERISTIC_META.get(char_type, ('string', [PERM_READ], None))
        self.service = service
        self.type = char_type
        self.iid = iid
        self.format = fmt
        self.perms = list(perms)
        self.unit = unit
        self.limits = dict(CHARACTERISTIC_LIMITS.get(char_type, {}))
        self.value: Any = None
        self._get_handler: Optional[Callable[[], Any]] = None
        self._set_handler: Optional[Callable[[Any], None]] = None

    @property
    def name(self) -> str:
        return get_characteristic_name(self.type)

    @property
    def writable(self) -> bool:
        return PERM_WRITE in self.perms

    def on_get(self, handler: Callable[[], Any]) -> 'Characteristic':
        self._get_handler = handler
        return self

    def on_set(self, handler: Callable[[Any], None]) -> 'Characteristic':
        self._set_handler = handler
        return self

    def get_value(self) -> Any:
        """Read through the get hook (if any), caching the result."""
        if self._get_handler is not None:
            self.value = self._get_handler()
        return self.value

    def set_value(self, value: Any):
        """User action: coerce and check limits, run the set hook, then record the new value.

        Raises ValueError before the hook runs when the value is rejected.
        """
        if not self.writable:
            raise CharacteristicNotWritable(f"{self.name} is read-only")
        value = coerce_value(self.format, value)
        check_limits(self.limits, value)
        if self._set_handler is not None:
            self._set_handler(value)
        self.update_value(value)

    def update_value(self, value: Any):
        """Push a value from the device side. Only real changes are broadcast."""
        old_value = self.value
        self.value = value
        if old_value != value:
            self.service.accessory.notify_change(self, old_value, value)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.type,
            'iid': self.iid,
            'perms': list(self.perms),
            'format': self.format,
            'value': self.value,
        }
        if self.unit:
            data['unit'] = self.unit
        data.update(self.limits)
        return data


class Service:
    def __init__(self, accessory: 'Accessory', service_type: str, iid: int, name: Optional[str] = None, subtype: Optional[str] = None):
        self.accessory = accessory
        self.type = service_type
        self.iid = iid
        self.subtype = subtype
        self.characteristics: List[Characteristic] = []
        if name:
            self.set_characteristic(CharacteristicsTypes.NAME, name)

    def get_characteristic(self, char_type: str) -> Characteristic:
        """Return the characteristic of this type, adding it when missing."""
        for char in self.characteristics:
            if char.type == char_type:
                return char
        char = Characteristic(self, char_type, self.accessory.next_iid())
        self.characteristics.append(char)
        return char

    def set_characteristic(self, char_type: str, value: Any) -> 'Service':
        self.get_characteristic(char_type).value = value
        return self

    def update_characteristic(self, char_type: str, value: Any) -> 'Service':
        self.get_characteristic(char_type).update_value(value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'iid': self.iid,
            'characteristics': [c.to_dict() for c in self.characteristics],
        }


class Accessory:
    """A platform accessory: identity, free-form context and services."""

    def __init__(self, display_name: str, accessory_uuid: str, aid: Optional[int] = None):
        self.display_name = display_name
        self.uuid = accessory_uuid
        self.aid = aid
        self.context: Dict[str, Any] = {}
        self.services: List[Service] = []
        self._next_iid = 1
        self._change_listener: Optional[Callable[['Accessory', Characteristic, Any, Any], None]] = None

    @property
    def serial_number(self) -> Optional[str]:
        return (self.context.get('device') or {}).get('serial')

    def next_iid(self) -> int:
        iid = self._next_iid
        self._next_iid += 1
        return iid

    def get_service(self, service_type: str, subtype: Optional[str] = None) -> Optional[Service]:
        for service in self.services:
            if service.type == service_type and (subtype is None or service.subtype == subtype):
                return service
        return None

    def add_service(self, service_type: str, name: Optional[str] = None, subtype: Optional[str] = None) -> Service:
        service = Service(self, service_type, self.next_iid(), name=name, subtype=subtype)
        self.services.append(service)
        return service

    def find_characteristic(self, char_type: str) -> Optional[Characteristic]:
        for service in self.services:
            for char in service.characteristics:
                if char.type == char_type:
                    return char
        return None

    def notify_change(self, char: Characteristic, old_value: Any, new_value: Any):
        if self._change_listener is not None:
            self._change_listener(self, char, old_value, new_value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'aid': self.aid,
            'uuid': self.uuid,
            'serial_number': self.serial_number,
            'display_name': self.display_name,
            'services': [s.to_dict() for s in self.services],
        }


class AccessoryRegistry:
    """Creates, restores and removes accessories keyed by a stable UUID.

    Accessory identities (uuid, aid, display name, context) are cached in
    SQLite when a db_path is given so restarts restore the same aid per device.
    Characteristic changes are broadcast to event listener queues as SSE frames.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        self.accessories: Dict[str, Accessory] = {}
        self.event_listeners: List[asyncio.Queue] = []
        self.last_update: Optional[float] = None

        if self.db_path:
            ensure_schema_and_migrate(self.db_path)

    @staticmethod
    def generate_uuid(serial: str) -> str:
        return str(uuid.uuid5(ACCESSORY_NAMESPACE, serial))

    def create_accessory(self, display_name: str, accessory_uuid: str) -> Accessory:
        accessory = Accessory(display_name, accessory_uuid)
        accessory._change_listener = self._on_characteristic_change
        return accessory

    def load_cached_accessories(self) -> List[Accessory]:
        """Rebuild accessories cached by a previous run (identity and context only)."""
        if not self.db_path:
            return []

        restored = []
        conn = sqlite3.connect(self.db_path)
        cursor = conn.execute("""
            SELECT uuid, aid, display_name, context
            FROM accessories
            ORDER BY aid
        """)
        for accessory_uuid, aid, display_name, context_json in cursor.fetchall():
            accessory = self.create_accessory(display_name, accessory_uuid)
            accessory.aid = aid
            try:
                accessory.context = json.loads(context_json) if context_json else {}
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring unreadable context for cached accessory {display_name}: {e}")
            restored.append(accessory)
        conn.close()

        logger.info(f"Loaded {len(restored)} accessories from cache")
        return restored

    def configure_accessory(self, accessory: Accessory):
        """Adopt an accessory restored from cache."""
        logger.info(f"Loading accessory from cache: {accessory.display_name}")
        accessory._change_listener = self._on_characteristic_change
        if accessory.aid is None:
            accessory.aid = self._allocate_aid()
        self.accessories[accessory.uuid] = accessory

    def register_accessories(self, accessories: List[Accessory]):
        for accessory in accessories:
            if accessory.aid is None:
                accessory.aid = self._allocate_aid()
            self.accessories[accessory.uuid] = accessory
            self._save_to_db(accessory)
            logger.debug(f"Registered accessory {accessory.display_name} (aid={accessory.aid})")

    def update_accessories(self, accessories: List[Accessory]):
        for accessory in accessories:
            self._save_to_db(accessory)

    def unregister_accessories(self, accessories: List[Accessory]):
        for accessory in accessories:
            self.accessories.pop(accessory.uuid, None)
            accessory._change_listener = None
            if self.db_path:
                conn = sqlite3.connect(self.db_path)
                conn.execute("DELETE FROM accessories WHERE uuid = ?", (accessory.uuid,))
                conn.commit()
                conn.close()
            logger.debug(f"Unregistered accessory {accessory.display_name}")

    def get(self, accessory_uuid: str) -> Optional[Accessory]:
        return self.accessories.get(accessory_uuid)

    def find_by_serial(self, serial: str) -> Optional[Accessory]:
        for accessory in self.accessories.values():
            if accessory.serial_number == serial:
                return accessory
        return None

    def all(self) -> List[Accessory]:
        return sorted(self.accessories.values(), key=lambda a: a.aid or 0)

    def _allocate_aid(self) -> int:
        used = {a.aid for a in self.accessories.values() if a.aid is not None}
        aid = FIRST_ACCESSORY_AID
        while aid in used:
            aid += 1
        return aid

    def _save_to_db(self, accessory: Accessory):
        if not self.db_path:
            return
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            INSERT INTO accessories (uuid, aid, serial_number, display_name, context)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(uuid) DO UPDATE SET
                aid = excluded.aid,
                serial_number = excluded.serial_number,
                display_name = excluded.display_name,
                context = excluded.context,
                last_seen = CURRENT_TIMESTAMP
        """, (accessory.uuid, accessory.aid, accessory.serial_number or '', accessory.display_name, json.dumps(accessory.context)))
        conn.commit()
        conn.close()

    # Control surface entry points

    def get_characteristic_value(self, serial: str, char_type: str) -> Any:
        accessory = self.find_by_serial(serial)
        if accessory is None:
            raise KeyError(serial)
        char = accessory.find_characteristic(char_type)
        if char is None:
            raise KeyError(char_type)
        return char.get_value()

    def set_characteristic_value(self, serial: str, char_type: str, value: Any) -> Any:
        """Route a user action into the characteristic's set hook."""
        accessory = self.find_by_serial(serial)
        if accessory is None:
            raise KeyError(serial)
        char = accessory.find_characteristic(char_type)
        if char is None:
            raise KeyError(char_type)
        char.set_value(value)
        return char.value

    # Events

    def _on_characteristic_change(self, accessory: Accessory, char: Characteristic, old_value: Any, new_value: Any):
        self.last_update = time.time()
        self.broadcast_event({
            'type': 'characteristic',
            'aid': accessory.aid,
            'iid': char.iid,
            'serial_number': accessory.serial_number,
            'display_name': accessory.display_name,
            'characteristic': char.name,
            'value': new_value,
            'previous_value': old_value,
            'timestamp': self.last_update,
        })

    def broadcast_event(self, event_data: Dict[str, Any]):
        """Broadcast an event to all connected SSE clients."""
        event_message = f"data: {json.dumps(event_data)}\n\n"

        disconnected_listeners = []
        for listener in self.event_listeners:
            try:
                listener.put_nowait(event_message)
            except asyncio.QueueFull:
                disconnected_listeners.append(listener)

        for listener in disconnected_listeners:
            logger.debug("Dropping event listener with a full queue")
            self.event_listeners.remove(listener)

    def close_listeners(self):
        """Signal end of stream to every event listener."""
        for queue in list(self.event_listeners):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self.event_listeners.clear()
