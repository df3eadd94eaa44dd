#!/usr/bin/env python3
"""
Stylus Token Deployment Service
Serves POST /deploy-token and GET /health.

Usage:
- Set PRIVATE_KEY and RPC_ENDPOINT in your environment or .env file
- Make sure cargo-stylus and foundry's cast are on PATH
- Run: python run_server.py
"""

import os
import sys

from aiohttp import web

from deployer.config import DeployerSettings, setup_logging
from deployer.errors import ConfigurationError
from deployer.server import create_app


def print_banner(settings: DeployerSettings):
    print("\n" + "=" * 60)
    print("🚀 STYLUS TOKEN DEPLOYMENT SERVICE")
    print("=" * 60)
    print(f"🏭 Default factory: {settings.factory_address}")
    print(f"📁 Token contract: {settings.token_dir}")
    print(f"📁 Factory contract: {settings.factory_dir}")
    if settings.private_key and settings.rpc_endpoint:
        print("✅ Signing key and RPC endpoint: configured")
    else:
        # Requests will be refused with HTTP 500 until both are set
        print("⚠️  PRIVATE_KEY / RPC_ENDPOINT missing - deployments will be refused")
    for label, path in (("token", settings.token_dir), ("factory", settings.factory_dir)):
        if not os.path.isdir(path):
            print(f"⚠️  {label} contract directory not found: {path}")
    print(f"⛽ Max fee per gas: {settings.max_fee_per_gas_gwei} gwei")
    print(f"⏱️  Timeouts: read {settings.read_timeout}s, send {settings.send_timeout}s, "
          f"deploy {settings.deploy_timeout}s")
    print("=" * 60)
    print(f"🌐 Deployment API server running on port {settings.port}\n")


def main():
    try:
        settings = DeployerSettings.from_env()
    except ConfigurationError as e:
        print(f"\n❌ CONFIGURATION ERROR: {e}")
        sys.exit(1)

    setup_logging(settings.log_level)
    print_banner(settings)
    web.run_app(create_app(settings), host=settings.host, port=settings.port, print=None)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
        sys.exit(0)
