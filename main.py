#!/usr/bin/env python3
"""Sleeping Bedrock Listener - Main Entry Point

A Python service that stands in for a stopped Minecraft Bedrock server,
turning away players with a message and waking the real server when they try to join.
"""

import asyncio
import argparse
import logging
import logging.handlers
import sys
from pathlib import Path

import sdnotify

from sleeping_bedrock import __version__
from sleeping_bedrock.config_manager import ConfigManager
from sleeping_bedrock.service import SleepingService


def setup_logging(config: dict) -> None:
    """Set up logging configuration."""
    log_config = config.get("logging", {})
    log_level = getattr(logging, log_config.get("level", "INFO").upper())
    log_file = log_config.get("file", "/var/log/sleeping-bedrock.log")
    max_size_mb = log_config.get("max_size_mb", 10)
    backup_count = log_config.get("backup_count", 3)
    console_output = log_config.get("console_output", True)

    # Create formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Set up root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console handler
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # File handler with rotation
    try:
        # Ensure log directory exists
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        logging.info(f"Logging configured - Level: {log_config.get('level', 'INFO')}, File: {log_file}")

    except OSError as e:
        print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)
        print("Continuing with console logging only", file=sys.stderr)


async def status_server(port: int, service: SleepingService):
    """Start a simple HTTP status server for monitoring."""
    from aiohttp import web

    async def get_status(request):
        """Get service status as JSON."""
        if service.is_running:
            return web.json_response({
                "status": "running",
                "service": service.get_status(),
                "config": service.get_config_info()
            })
        return web.json_response({
            "status": "stopped",
            "message": "Service is not running"
        }, status=503)

    async def health_check(request):
        """Simple health check endpoint."""
        return web.json_response({"status": "healthy"})

    # Create web application
    app = web.Application()
    app.router.add_get('/status', get_status)
    app.router.add_get('/health', health_check)
    app.router.add_get('/', get_status)

    # Start server
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, '0.0.0.0', port)
    await site.start()

    logging.info(f"Status server started on port {port}")
    return runner


async def main_service(args) -> int:
    """Main service function."""
    notifier = sdnotify.SystemdNotifier()
    try:
        # Load configuration and set up logging before anything else logs
        config = ConfigManager(args.config).load_config()
        setup_logging(config)

        logging.info("Starting Sleeping Bedrock Listener")
        logging.info(f"Configuration loaded from: {args.config}")

        # Create service
        service = SleepingService(args.config)
        if not await service.initialize():
            logging.error("Failed to initialize service")
            return 1

        # Start status server if enabled
        status_runner = None
        if config["monitoring"]["health_check_enabled"]:
            try:
                status_runner = await status_server(config["monitoring"]["status_endpoint_port"], service)
            except OSError as e:
                logging.warning(f"Failed to start status server: {e}")

        # Start the sleeping listener
        if not await service.start():
            logging.error("Failed to start service")
            if status_runner:
                await status_runner.cleanup()
            return 1

        # Run until shutdown, keeping systemd informed
        notifier.notify("READY=1")
        await service.run_forever()
        notifier.notify("STOPPING=1")

        # Clean shutdown
        if status_runner:
            await status_runner.cleanup()

        logging.info("Sleeping Bedrock Listener stopped")
        return 0

    except Exception as e:
        logging.error(f"Fatal error in main service: {e}")
        return 1


def create_example_config(path: str) -> None:
    """Create an example configuration file."""
    ConfigManager().save_example_config(path)
    print(f"Example configuration saved to: {path}")


def validate_config(path: str) -> None:
    """Validate configuration file."""
    try:
        config = ConfigManager(path).load_config()
        print(f"Configuration file {path} is valid")

        bedrock = config["bedrock"]
        wake = config["wake"]
        # Print summary
        print("\nConfiguration Summary:")
        print(f"  Bedrock: {'Enabled' if bedrock['enabled'] else 'Disabled'}")
        print(f"    Listen: {bedrock['bind_address']}:{bedrock['port']}")
        print(f"    Hide IPs in logs: {bedrock['hide_ip_in_logs']}")
        print(f"  Wake-on-LAN: {'Enabled' if wake['wol_enabled'] else 'Disabled'}")
        if wake['wol_enabled']:
            print(f"    Target: {wake['target_ip']} ({wake['mac_address']})")
        print(f"  Start command: {wake['start_command'] or '(none)'}")

    except Exception as e:
        print(f"Configuration validation failed: {e}", file=sys.stderr)
        sys.exit(1)


def show_status(config_path: str) -> None:
    """Show current service status."""
    import requests

    try:
        # Load config to get status port
        config = ConfigManager(config_path).load_config()

        if not config["monitoring"]["health_check_enabled"]:
            print("Status endpoint is disabled in configuration")
            return

        port = config["monitoring"]["status_endpoint_port"]
        response = requests.get(f"http://localhost:{port}/status", timeout=5)
        status_data = response.json()

        print("Sleeping Bedrock Listener Status:")
        print(f"  Status: {status_data['status']}")

        if 'service' in status_data:
            service = status_data['service']
            print(f"  Service State: {service['service_state']}")
            listener = service['listener']
            if listener:
                print(f"  Listener State: {listener['state']}")
                print(f"  Port: {listener['port']}")
                print(f"  Connections: {listener['connections']}")
            else:
                print("  Listener: released")

            stats = service['statistics']
            print(f"  Wake Signals: {stats['wake_signals']}")
            print(f"  Wake Attempts: {stats['wake_attempts']}")
            print(f"  Server Starts: {stats['server_starts']}")

    except (requests.RequestException, ValueError, KeyError) as e:
        print(f"Failed to get status: {e}")


def main():
    """Main entry point with command line argument handling."""
    parser = argparse.ArgumentParser(
        description="Sleeping Bedrock Listener",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                   # Run with default config.json
  %(prog)s --config /etc/sleeping-bedrock.json # Run with custom config
  %(prog)s --create-config                    # Create example config
  %(prog)s --validate-config                  # Validate current config
  %(prog)s --status                           # Show current status
        """
    )

    parser.add_argument(
        '--config', '-c',
        default='config.json',
        help='Configuration file path (default: config.json)'
    )

    parser.add_argument(
        '--create-config',
        action='store_true',
        help='Create an example configuration file'
    )

    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Validate the configuration file'
    )

    parser.add_argument(
        '--status',
        action='store_true',
        help='Show current service status'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'Sleeping Bedrock Listener {__version__}'
    )

    args = parser.parse_args()

    # Handle special commands
    if args.create_config:
        create_example_config(args.config + '.example')
        return 0

    if args.validate_config:
        validate_config(args.config)
        return 0

    if args.status:
        show_status(args.config)
        return 0

    # Run main service
    try:
        return asyncio.run(main_service(args))
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 0


if __name__ == '__main__':
    sys.exit(main())
