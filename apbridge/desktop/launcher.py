"""Launcher that runs the local control API and optionally signs in to a slot."""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import time
from pathlib import Path

from urllib import error, request

ROOT_DIR = Path(__file__).resolve().parents[2]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Archipelago token bridge launcher")
    parser.add_argument("--server", default="http://127.0.0.1:8000")
    parser.add_argument("--config", default="", help="JSON bridge config file")
    parser.add_argument("--archipelago-host", default="")
    parser.add_argument("--slot", default="")
    parser.add_argument("--password", default="")
    parser.add_argument("--development", action="store_true")
    return parser.parse_args(argv)


def wait_for_server(server_url: str, timeout_s: float = 8.0) -> bool:
    start = time.time()
    while time.time() - start < timeout_s:
        try:
            with request.urlopen(f"{server_url}/api/session", timeout=0.5) as response:
                if int(response.status) < 500:
                    return True
        except (error.URLError, TimeoutError):
            pass
        time.sleep(0.2)
    return False


def build_server_env(args: argparse.Namespace) -> dict[str, str]:
    env = os.environ.copy()
    if args.config:
        env["APBRIDGE_CONFIG_PATH"] = str(Path(args.config).resolve())
    if args.development:
        env["APBRIDGE_ENVIRONMENT"] = "development"
    return env


def start_server(server_url: str, env: dict[str, str]) -> subprocess.Popen[str] | None:
    host_port = server_url.removeprefix("http://")
    host, port = host_port.split(":", maxsplit=1)
    command = [
        sys.executable,
        "-m",
        "uvicorn",
        "apbridge.backend.api:create_app",
        "--factory",
        "--host",
        host,
        "--port",
        port,
    ]
    process = subprocess.Popen(command, cwd=str(ROOT_DIR), env=env)
    if wait_for_server(server_url):
        return process
    process.terminate()
    return None


def build_connect_payload(args: argparse.Namespace) -> dict[str, str | None]:
    return {
        "host": args.archipelago_host or None,
        "slot": args.slot or None,
        "password": args.password or None,
    }


def connect_slot(server_url: str, payload: dict[str, str | None]) -> dict:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(
        f"{server_url}/api/session/connect",
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with request.urlopen(req, timeout=30) as response:
        return json.loads(response.read().decode("utf-8"))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    server_process = start_server(args.server, build_server_env(args))
    if server_process is None:
        print("Bridge server could not be started.", file=sys.stderr)
        return 1

    try:
        if args.slot:
            try:
                result = connect_slot(args.server, build_connect_payload(args))
            except error.URLError as exc:
                print(f"Connect request failed: {exc}", file=sys.stderr)
            else:
                stream = sys.stdout if result.get("connected") else sys.stderr
                print(result.get("message", ""), file=stream)
        server_process.wait()
    except KeyboardInterrupt:
        pass
    finally:
        server_process.terminate()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
