"""
Command-line interface for RPC Cache.
"""

import argparse
import json
import logging
import sys
import os

from .config import ConfigError, ProxyConfig, parse_providers
from .keys import InvalidRPCBody, parse_rpc_body, derive_cache_key


def print_banner():
    print("""
    ╔═══════════════════════════════════════════════════════════╗
    ║   ⚡ RPC Cache                                            ║
    ║   Answer the same JSON-RPC call once                      ║
    ╚═══════════════════════════════════════════════════════════╝
    """)


def cmd_serve(args):
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn required. Install with: pip install uvicorn")
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Settings travel to the app factory through the environment
    overrides = {
        "PROVIDERS": args.providers,
        "EDGE_CACHE_TTL": args.edge_ttl,
        "BROWSER_CACHE_TTL": args.browser_ttl,
        "PROVIDER_TIMEOUT": args.timeout,
        "PROVIDER_MAX_ATTEMPTS": args.max_attempts,
        "RPCCACHE_REDIS_URL": args.redis,
    }
    for name, value in overrides.items():
        if value is not None:
            os.environ[name] = str(value)

    try:
        config = ProxyConfig.from_env()
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print_banner()
    print(f"Providers: {len(config.providers)}")
    if config.redis_url:
        print(f"Redis: {config.redis_url}")
    else:
        print("Storage: in-memory")
    if not config.max_attempts:
        print("⚠️  Unbounded provider retries (a failing pool can hang requests)")
    print()

    uvicorn.run(
        "rpccache.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info" if args.verbose else "warning",
    )


def cmd_key(args):
    try:
        rpc = parse_rpc_body(args.body.encode("utf-8"))
    except InvalidRPCBody as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    if rpc.bypass_cache:
        print(f"bypass ({rpc.method} is never cached)")
        return

    key = derive_cache_key(f"http://localhost{args.path}", rpc.params)
    print(key.path)


def cmd_providers(args):
    try:
        providers = parse_providers(args.providers or os.getenv("PROVIDERS", ""))
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(json.dumps([p.url for p in providers], indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="RPC Cache - Caching edge proxy for JSON-RPC providers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rpccache serve --providers '["https://rpc.ankr.com/eth", "https://cloudflare-eth.com"]'
  rpccache serve --edge-ttl 30 --timeout 2000
  rpccache serve --redis redis://localhost:6379/0
  rpccache key '{"jsonrpc":"2.0","id":1,"method":"eth_getBalance","params":["0xabc","latest"]}'

Usage with web3.py:
  from web3 import Web3
  w3 = Web3(Web3.HTTPProvider("http://localhost:8000/"))
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the server")
    serve_parser.add_argument("--host", "-H", default="0.0.0.0")
    serve_parser.add_argument("--port", "-p", type=int, default=8000)
    serve_parser.add_argument("--providers", "-P",
                              help="Provider URLs as a JSON array or comma-separated list")
    serve_parser.add_argument("--edge-ttl", type=int, help="Edge cache TTL in seconds (default: 60)")
    serve_parser.add_argument("--browser-ttl", type=int, help="Browser cache TTL in seconds (default: 0)")
    serve_parser.add_argument("--timeout", "-t", type=int,
                              help="Per-attempt provider timeout in ms (default: 5000)")
    serve_parser.add_argument("--max-attempts", type=int,
                              help="Provider attempts per request, 0 for unlimited (default: 10)")
    serve_parser.add_argument("--redis", "-r", help="Redis URL for a shared edge cache")
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.add_argument("--verbose", "-v", action="store_true")
    serve_parser.set_defaults(func=cmd_serve)

    key_parser = subparsers.add_parser("key", help="Show the cache key for a POST body")
    key_parser.add_argument("body", help="JSON-RPC request body")
    key_parser.add_argument("--path", default="/", help="Request path (default: /)")
    key_parser.set_defaults(func=cmd_key)

    providers_parser = subparsers.add_parser("providers", help="Validate a provider list")
    providers_parser.add_argument("providers", nargs="?", help="Defaults to $PROVIDERS")
    providers_parser.set_defaults(func=cmd_providers)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == "__main__":
    main()
