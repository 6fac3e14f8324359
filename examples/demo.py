"""
Demo: See RPC Cache in action.

1. Start server: rpccache serve --providers https://cloudflare-eth.com
2. Run this: python examples/demo.py
"""

import time
import httpx

URL = "http://localhost:8000"


def rpc(method: str, params: list, id: int = 1) -> httpx.Response:
    return httpx.post(
        URL,
        json={"jsonrpc": "2.0", "id": id, "method": method, "params": params},
        timeout=60,
    )


def timed(label: str, method: str, params: list, id: int):
    start = time.time()
    response = rpc(method, params, id)
    elapsed = time.time() - start
    body = response.json()
    print(f"  {label} | id={body.get('id')} | {elapsed:.3f}s | {body.get('result', body.get('error'))}")


def main():
    print("\n⚡ RPC Cache Demo\n" + "=" * 40)

    try:
        httpx.options(URL)
    except httpx.ConnectError:
        print("Server not running. Start with: rpccache serve --providers <url>")
        return

    params = ["0x0000000000000000000000000000000000000000", "latest"]

    print("\neth_getBalance (cached at the edge)")
    print("-" * 40)
    timed("Request 1", "eth_getBalance", params, 1)
    timed("Request 2", "eth_getBalance", params, 2)

    print("\neth_blockNumber (always fetched)")
    print("-" * 40)
    timed("Request 1", "eth_blockNumber", [], 3)
    timed("Request 2", "eth_blockNumber", [], 4)
    print("\n" + "=" * 40 + "\n")


if __name__ == "__main__":
    main()
