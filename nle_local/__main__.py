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

"""Command-line interface for NoLongerEvil Local."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from .__version__ import __version__
from .config import ConfigError, PlatformConfig, load_config
from .platform import ThermostatPlatform
from .registry import AccessoryRegistry
from .routes import create_app, register_routes
from . import zeroconf_register

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)

# Global variables
platform: Optional[ThermostatPlatform] = None
server: Optional[uvicorn.Server] = None


def build_config(args) -> PlatformConfig:
    """Load the config file and apply command line overrides."""
    config = load_config(args.config)
    if args.broker:
        config.mqtt_broker = args.broker
    if args.topic_prefix:
        config.topic_prefix = args.topic_prefix
    config.validate()
    return config


def uvicorn_log_config(args) -> dict:
    """Uvicorn logging matching our own format, without duplicate handlers."""
    if args.syslog:
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {
                "uvicorn": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.error": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": True},
            },
        }

    if args.daemon:
        formatter = {"format": "%(levelname)-8s %(message)s"}
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        },
    }


async def run_server(args, config: PlatformConfig):
    """Run the MQTT bridge and the REST API on one event loop."""
    global platform, server

    def handle_signal(signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, shutting down...")
        if platform:
            platform.registry.close_listeners()
        if server:
            server.should_exit = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    mdns_registered = False
    try:
        db_path = Path(os.path.expanduser(args.state))
        registry = AccessoryRegistry(str(db_path))

        platform = ThermostatPlatform(config, registry)
        platform.discover_devices()
        platform.start()

        app = create_app()
        register_routes(app, lambda: platform)

        if not args.no_mdns:
            mdns_registered = await zeroconf_register.register_service_async(
                port=args.port, props={'path': '/', 'version': __version__}
            )

        logger.info("*** NoLongerEvil Local ready! ***")
        logger.info(f"MQTT broker: {config.mqtt_broker} (prefix: {config.topic_prefix})")
        logger.info(f"Thermostats: {len(config.devices)}")
        logger.info(f"API Server: http://0.0.0.0:{args.port}")
        logger.info(f"Documentation: http://0.0.0.0:{args.port}/docs")

        uvicorn_config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=args.port,
            log_config=uvicorn_log_config(args),
            access_log=True
        )
        server = uvicorn.Server(uvicorn_config)
        await server.serve()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down gracefully...")
    finally:
        if mdns_registered:
            await zeroconf_register.unregister_service_async()

        if platform:
            logger.info("Performing cleanup...")
            await platform.stop()

        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except OSError as e:
                logger.warning(f"Failed to remove PID file: {e}")


def configure_logging(args):
    if args.syslog:
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            # Network address (host:port)
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'nle-local[%(process)d]: %(levelname)s %(message)s'
            ))
            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            root_logger.handlers = [syslog_handler]
            logger.info("Logging to syslog: %s", args.syslog)
        except OSError as e:
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s %(levelname)s %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                stream=sys.stdout,
                force=True
            )
            logger.error(f"Failed to connect to syslog ({args.syslog}): {e}")
            logger.info("Falling back to console logging")
    elif args.daemon:
        # Daemon mode: no timestamp, syslog adds it
        logging.basicConfig(
            level=logging.INFO,
            format='%(levelname)s %(message)s',
            stream=sys.stdout,
            force=True
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            stream=sys.stdout,
            force=True
        )

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NoLongerEvil Local - HomeKit-style accessories for NoLongerEvil thermostats over MQTT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with the default config file (~/.nle-local.json)
  nle-local

  # Override the broker and topic prefix from the config file
  nle-local --config ./nle.json --broker mqtt://192.168.1.10:1883 --topic-prefix nolongerevil

  # Run as system daemon with a PID file
  nle-local --daemon --pid-file /var/run/nle-local.pid

Config file:
  {
    "mqttBroker": "mqtt://192.168.1.10:1883",
    "topicPrefix": "nolongerevil",
    "devices": [{"name": "Hallway", "serial": "02AA01AC0000000X"}]
  }

API Endpoints:
  GET  /status                                     - System status
  GET  /accessories                                - All accessories
  GET  /accessories/{serial}/characteristics/{c}   - Read a characteristic
  PUT  /accessories/{serial}/characteristics/{c}   - Write a characteristic (?value=)
  GET  /thermostats                                - Simplified thermostat state
  GET  /events                                     - Server-Sent Events
        """
    )
    parser.add_argument("--config", default="~/.nle-local.json",
                        help="Path to JSON configuration (default: ~/.nle-local.json)")
    parser.add_argument("--state", default="~/.nle-local.db",
                        help="Path to accessory cache database (default: ~/.nle-local.db)")
    parser.add_argument("--broker",
                        help="MQTT broker URL, overrides mqttBroker from the config file")
    parser.add_argument("--topic-prefix",
                        help="MQTT topic prefix, overrides topicPrefix from the config file")
    parser.add_argument("--port", type=int, default=4408,
                        help="Port for REST API server (default: 4408)")
    parser.add_argument("--no-mdns", action="store_true",
                        help="Do not advertise the REST API via mDNS")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                        help="Run in daemon mode (structured logging for syslog, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                        help="Send logs to syslog instead of stdout (e.g., /dev/log, localhost:514)")
    parser.add_argument("--pid-file",
                        help="Write process ID to specified file (useful for daemon mode)")
    return parser


def main():
    """Main entry point for the CLI."""
    args = build_parser().parse_args()

    # Daemon mode implies PID file if not specified
    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/nle-local.pid" if sys.platform != "win32" else "nle-local.pid"

    configure_logging(args)

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args, config))
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
