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

"""MQTT payload decoding and command payload encoding."""

import enum
import math
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from aiohomekit import hkjson

# Leading decimal number, same prefix rule as a JavaScript parseFloat()
_NUMBER_PREFIX = re.compile(r'^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?')

_TRUE_STRINGS = {'true', '1', 'on', 'yes'}
_FALSE_STRINGS = {'false', '0', 'off', 'no'}


class PayloadKind(enum.Enum):
    NUMBER = 'number'
    STRING = 'string'
    STRUCTURED = 'structured'


@dataclass(frozen=True)
class Payload:
    """A decoded MQTT payload.

    NUMBER carries a float, STRING a str, STRUCTURED anything else JSON can
    produce (bool, None, dict, list).
    """
    kind: PayloadKind
    value: Any

    def as_number(self) -> Optional[float]:
        if self.kind is PayloadKind.NUMBER:
            return self.value
        return None

    def as_bool(self) -> Optional[bool]:
        if self.kind is PayloadKind.STRUCTURED and isinstance(self.value, bool):
            return self.value
        if self.kind is PayloadKind.NUMBER:
            return self.value != 0
        if self.kind is PayloadKind.STRING:
            text = self.value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        return None

    def as_text(self) -> str:
        if self.kind is PayloadKind.STRING:
            return self.value
        if self.kind is PayloadKind.NUMBER:
            return format_number(self.value)
        return hkjson.dumps(self.value)


def parse_number(text: str) -> Optional[float]:
    """Parse the leading number of text, or None when there is none."""
    match = _NUMBER_PREFIX.match(text)
    if not match:
        return None
    value = float(match.group(0))
    if not math.isfinite(value):
        return None
    return value


def format_number(value: Union[int, float]) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def decode_payload(raw: Union[bytes, bytearray, str, None]) -> Payload:
    """Decode a raw payload: JSON first, then a number, then a plain string.

    A JSON string holding a number ('"21.5"') also resolves to a number.
    Never raises.
    """
    if raw is None:
        text = ''
    elif isinstance(raw, (bytes, bytearray)):
        text = bytes(raw).decode('utf-8', errors='replace')
    else:
        text = str(raw)

    try:
        value = hkjson.loads(text)
    except ValueError:
        value = text

    if isinstance(value, bool) or value is None:
        return Payload(PayloadKind.STRUCTURED, value)

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return Payload(PayloadKind.STRING, text)
        return Payload(PayloadKind.NUMBER, float(value))

    if isinstance(value, str):
        number = parse_number(value)
        if number is not None:
            return Payload(PayloadKind.NUMBER, number)
        return Payload(PayloadKind.STRING, value)

    return Payload(PayloadKind.STRUCTURED, value)


def encode_command(value: Any) -> str:
    """Encode a command value for a `/set` topic.

    Numbers and strings are sent as their plain text, booleans and
    structured values as JSON.
    """
    if isinstance(value, bool) or isinstance(value, (dict, list, tuple)) or value is None:
        return hkjson.dumps(value)
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)
