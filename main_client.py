import sys
import json
import signal
import asyncio
import argparse
import logging
from pathlib import Path

def load_profile(args):
    from proxylink.client.profile import Profile

    if args.uri:
        return Profile.from_uri(args.uri)
    with open(args.profile, 'r', encoding='utf-8-sig') as f:
        return Profile(**json.load(f))

async def run(args) -> int:
    from proxylink.client.connection import Connection

    profile = load_profile(args)
    config_dir = Path(args.config_dir)
    connection = Connection(profile, config_dir)

    if not connection.is_valid():
        logging.error("Profile is missing server address, password or local address")
        return 1

    if args.print_uri:
        print(connection.get_uri())

    loop = asyncio.get_running_loop()
    finished = asyncio.Event()
    result = {"code": 0}

    def on_state_changed(running: bool):
        logging.info(f"[{connection.name}] running={running}")
        if not running:
            finished.set()

    def on_start_failed():
        logging.error(f"[{connection.name}] tunnel failed to start")
        result["code"] = 1

    def on_latency_available(latency: int):
        logging.info(f"[{connection.name}] latency {latency} ms")

    connection.on_state_changed = on_state_changed
    connection.on_start_failed = on_start_failed
    connection.on_latency_available = on_latency_available

    # Handle Ctrl+C / SIGTERM
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, connection.stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(connection.stop))

    connection.start()
    if not connection.is_running:
        # port conflict: nothing was started
        return 1
    # stop() releases the handles, keep them to wait for the processes
    workers = [w for w in (connection.tunnel, connection.forwarder) if w is not None]

    await finished.wait()
    connection.close()
    for worker in workers:
        await worker.wait_closed()
    return result["code"]

def main():
    from proxylink.client.config_manager import default_config_dir
    from proxylink.shared.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="proxylink client")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--uri", type=str, help="trojan:// connection URI")
    source.add_argument("--profile", type=str, help="Path to a JSON profile file")
    parser.add_argument("--config-dir", type=str, default=str(default_config_dir()), help="Directory for settings and generated worker configs")
    parser.add_argument("--log-dir", type=str, default=None, help="Also write rotating log files here")
    parser.add_argument("--print-uri", action="store_true", help="Print the normalized connection URI")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logs")
    args = parser.parse_args()

    setup_logging("DEBUG" if args.verbose else "INFO", Path(args.log_dir) if args.log_dir else None)
    logging.info("Starting proxylink client...")

    try:
        code = asyncio.run(run(args))
    except (ValueError, OSError) as e:
        logging.error(f"Cannot start: {e}")
        code = 1
    sys.exit(code)

if __name__ == "__main__":
    main()
