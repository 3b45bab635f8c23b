from __future__ import annotations

import argparse
import logging
import os
import threading

from .client import SyncClient
from .config import Settings, load_settings
from .constants import DEFAULT_POLL_TIMEOUT_MS
from .errors import ConfigError, TransportError
from .net import Impairment, UdpEndpoint
from .packet import Command, CommandVerb
from .server import StorageServer

log = logging.getLogger(__name__)


def _settings(args: argparse.Namespace, **overrides: object) -> Settings:
    return args.settings.with_overrides(
        chunk_size=args.chunk_size,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
        **overrides,
    )


def _wait_for_interrupt(stop: threading.Event) -> None:
    try:
        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        log.info("interrupted; shutting down")


def cmd_serve(args: argparse.Namespace) -> int:
    settings = _settings(
        args,
        storage_dir=args.storage_dir,
        server_host=args.listen_host,
        server_port=args.listen_port,
    )
    settings.warn_if_oversized()
    os.makedirs(settings.storage_dir, exist_ok=True)

    udp = UdpEndpoint.listening(
        settings.server_host,
        settings.server_port,
        timeout_ms=DEFAULT_POLL_TIMEOUT_MS,
        impairment=Impairment(settings.loss_rate, settings.delay_ms),
    )
    server = StorageServer(udp, settings.storage_dir, chunk_size=settings.chunk_size)

    done = threading.Event()

    def runner() -> None:
        try:
            server.serve_forever()
        finally:
            done.set()

    threading.Thread(target=runner, name="cloudsync-server", daemon=True).start()
    _wait_for_interrupt(done)
    server.stop()
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    settings = _settings(
        args,
        sync_dir=args.sync_dir,
        server_host=args.server_host,
        server_port=args.server_port,
        client_host=args.listen_host,
        client_port=args.listen_port,
        scan_interval=args.scan_interval,
        report_interval=args.report_interval,
    )
    settings.warn_if_oversized()
    os.makedirs(settings.sync_dir, exist_ok=True)

    udp = UdpEndpoint.listening(
        settings.client_host,
        settings.client_port,
        timeout_ms=DEFAULT_POLL_TIMEOUT_MS,
        impairment=Impairment(settings.loss_rate, settings.delay_ms),
    )
    client = SyncClient(
        udp,
        (settings.server_host, settings.server_port),
        settings.sync_dir,
        chunk_size=settings.chunk_size,
        scan_interval_s=settings.scan_interval,
        report_interval_s=settings.report_interval,
    )
    client.start()
    _wait_for_interrupt(threading.Event())
    client.stop()
    return 0


def cmd_command(args: argparse.Namespace) -> int:
    command = Command(CommandVerb(args.verb), args.file_name)
    udp = UdpEndpoint.sending()
    try:
        udp.sendto(command.to_bytes(), (args.dest_host, args.dest_port))
    finally:
        udp.close()
    log.info("sent %s %s to %s:%d", command.verb.value, command.file_name, args.dest_host, args.dest_port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cloudsync", description="Directory sync over UDP.")
    p.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    p.add_argument("--env-file", default=None, help="dotenv file with CLOUDSYNC_* settings")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--chunk-size", type=int, default=None)
        x.add_argument("--loss-rate", type=float, default=None, help="simulate datagram loss")
        x.add_argument("--delay-ms", type=int, default=None, help="simulate datagram delay")

    serve = sub.add_parser("serve", help="receive files into a storage directory")
    add_common(serve)
    serve.add_argument("--listen-host", default=None)
    serve.add_argument("--listen-port", type=int, default=None)
    serve.add_argument("--storage-dir", default=None)
    serve.set_defaults(func=cmd_serve)

    sync = sub.add_parser("sync", help="keep a directory synced to a server")
    add_common(sync)
    sync.add_argument("--server-host", default=None)
    sync.add_argument("--server-port", type=int, default=None)
    sync.add_argument("--listen-host", default=None)
    sync.add_argument("--listen-port", type=int, default=None)
    sync.add_argument("--sync-dir", default=None)
    sync.add_argument("--scan-interval", type=float, default=None)
    sync.add_argument("--report-interval", type=float, default=None)
    sync.set_defaults(func=cmd_sync)

    command = sub.add_parser("command", help="send one DELETE/UPDATE command")
    command.add_argument("verb", choices=[v.value for v in CommandVerb])
    command.add_argument("file_name")
    command.add_argument("--dest-host", default="127.0.0.1")
    command.add_argument("--dest-port", type=int, required=True)
    command.set_defaults(func=cmd_command)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        args.settings = load_settings(args.env_file)
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        log.error("invalid configuration: %s", e)
        return 2

    level = args.log_level or args.settings.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except ConfigError as e:
        log.error("invalid configuration: %s", e)
        return 2
    except (TransportError, ValueError) as e:
        log.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
