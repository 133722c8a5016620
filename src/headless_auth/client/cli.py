#!/usr/bin/env python3
"""
Log a headless client in through the device flow.

Usage:
    # Register (if needed), show the user code and wait for approval
    headless-auth-login --server-url http://localhost:3000

    # Keep client state somewhere else and force a fresh registration
    headless-auth-login --storage-dir ~/.mcp-auth --register
"""

import argparse
import asyncio
import json
import logging
import os
import sys

import httpx

from ..core.exceptions import HeadlessAuthError
from .headless import ClientPollingEngine
from .storage import DEFAULT_STORAGE_DIR

logger = logging.getLogger(__name__)


class Colors:
    """ANSI color codes for console output"""
    RED = '\033[0;31m'
    GREEN = '\033[0;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[0;34m'
    NC = '\033[0m'


def error(message: str):
    print(f"{Colors.RED}[ERROR]{Colors.NC} {message}", file=sys.stderr)


def success(message: str):
    print(f"{Colors.GREEN}[SUCCESS]{Colors.NC} {message}")


async def check_server(server_url: str) -> bool:
    """Probe the authorization server metadata endpoint"""
    url = f"{server_url.rstrip('/')}/.well-known/oauth-authorization-server"
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        error(f"Server check failed: {e}")
        return False
    logger.info(f"Server metadata response status: {response.status_code}")
    return response.is_success


async def login(args) -> int:
    if not await check_server(args.server_url):
        return 1

    client = ClientPollingEngine(args.server_url, storage_dir=args.storage_dir)
    try:
        if args.register or client.client_information() is None:
            print("Registering client...")
            info = await client.register()
            success(f"Client registered: {info.get('client_id')}")

        tokens = client.tokens()
        if tokens and not args.force:
            success("Already authenticated")
            print(json.dumps(tokens.model_dump(exclude_none=True), indent=2))
            return 0

        print("Starting device flow authentication...")
        device_auth = await client.authorize_headless()

        print("\n" + "=" * 70)
        print("DEVICE ACTIVATION")
        print("=" * 70)
        print(f"\nPlease visit: {device_auth.verification_uri}")
        print(f"And enter code: {device_auth.user_code}")
        print(f"\nOr visit this URL directly: {device_auth.verification_uri_complete}")
        print("=" * 70)

        print("\nWaiting for authorization...")
        tokens = await client.poll_for_authorization(
            device_code=device_auth.device_code,
            interval=device_auth.interval,
            timeout=min(args.timeout, device_auth.expires_in),
            on_pending=lambda: print(".", end="", flush=True),
            on_error=lambda message: error(f"\n{message}"),
            max_consecutive_errors=args.max_errors,
        )
        print()
        success("Authorization successful!")
        print(json.dumps(tokens.model_dump(exclude_none=True), indent=2))
        return 0
    except HeadlessAuthError as e:
        error(f"Authorization failed: {e.description or e.error}")
        return 1
    finally:
        await client.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Authenticate a headless MCP client with the device flow',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        '--server-url',
        default=os.environ.get('MCP_SERVER_URL', 'http://localhost:3000'),
        help='Auth server base URL (or env: MCP_SERVER_URL)'
    )

    parser.add_argument(
        '--storage-dir',
        default=DEFAULT_STORAGE_DIR,
        help=f'Directory for client state files (default: {DEFAULT_STORAGE_DIR})'
    )

    parser.add_argument(
        '--register',
        action='store_true',
        help='Register a new client even if client information is saved'
    )

    parser.add_argument(
        '--force',
        action='store_true',
        help='Run the device flow even if a session token is saved'
    )

    parser.add_argument(
        '--timeout',
        type=int,
        default=300,
        help='Seconds to wait for the user to authorize (default: 300)'
    )

    parser.add_argument(
        '--max-errors',
        type=int,
        default=None,
        help='Give up after this many consecutive polling errors'
    )

    parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Verbose output'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        return asyncio.run(login(args))
    except KeyboardInterrupt:
        error("Operation interrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
