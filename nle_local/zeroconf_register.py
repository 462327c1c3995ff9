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
"""mDNS advertisement of the REST API using AsyncZeroconf."""

import logging
import socket
from typing import Dict, Optional, Tuple

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = '_nle-local._tcp.local.'

# module-level registration handle: (async_zc, info)
_reg: Optional[Tuple[AsyncZeroconf, ServiceInfo]] = None


def _props_to_txt(props: Dict[str, str]):
    return {k: (v.encode('utf-8') if isinstance(v, str) else v) for k, v in props.items()}


def get_primary_ipv4() -> Optional[str]:
    """Return the IPv4 address the host would route outbound traffic from, or None.

    A UDP connect sends no packets but makes the kernel choose the source address.
    """
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        try:
            return socket.gethostbyname(socket.gethostname())
        except OSError:
            return None


def build_service_info(name: str, port: int, props: Optional[Dict[str, str]] = None, advertise_addr: Optional[str] = None) -> ServiceInfo:
    addresses = None
    addr = advertise_addr or get_primary_ipv4()
    if addr:
        try:
            addresses = [socket.inet_pton(socket.AF_INET, addr)]
        except OSError:
            logger.warning(f"Not advertising invalid IPv4 address {addr}")

    return ServiceInfo(
        SERVICE_TYPE,
        f"{name}.{SERVICE_TYPE}",
        addresses=addresses,
        port=port,
        properties=_props_to_txt(props or {}),
    )


async def register_service_async(name: str = 'nle-local', port: int = 4408, props: Optional[Dict[str, str]] = None, advertise_addr: Optional[str] = None) -> bool:
    """Register the REST API service. Returns True on success."""
    global _reg

    info = build_service_info(name, port, props, advertise_addr)
    async_zc = AsyncZeroconf()
    try:
        # allow_name_change avoids NonUniqueNameException on a name conflict
        await async_zc.async_register_service(info, allow_name_change=True)
    except Exception as e:
        logger.error(f"mDNS registration failed for {name}: {e}")
        await async_zc.async_close()
        return False

    _reg = (async_zc, info)
    logger.info(f"Advertised {info.name} on port {port} via mDNS")
    return True


async def unregister_service_async():
    """Unregister the current registration, if any."""
    global _reg
    if not _reg:
        return
    async_zc, info = _reg
    _reg = None
    try:
        await async_zc.async_unregister_service(info)
    except Exception as e:
        logger.warning(f"mDNS unregister failed: {e}")
    finally:
        await async_zc.async_close()
