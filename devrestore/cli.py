"""Command line entry point for restoring a device."""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional

from .config import RestoreTargets
from .control.dispatcher import DataRequestDispatcher
from .control.session import CancellationToken, RestoreSession
from .data.asr import ASRTransfer
from .data.base import DeviceTransport
from .data.tcp import LockdownClient, RestoredClient, TCPDeviceTransport
from .errors import ConnectionFailedError, RestoreError
from .logging_utils import extra_fields, setup_logging
from .settings import RestoreSettings, load_settings

EXIT_OK = 0
EXIT_FAILURE = -1
UUID_LENGTH = 40

_LOGGER = logging.getLogger("devrestore.cli")

USAGE = """\
Usage: {prog} [OPTIONS]
Restore firmware and filesystem to iPhone/iPod Touch.

  -d, --debug\t\t\tenable communication debugging
  -r, --recovery\t\tput device into recovery mode
  -f, --filesystem FILE\t\ttarget filesystem to install onto device
  -k, --kernelcache FILE\tkernelcache to install onto filesystem
  -u, --uuid UUID\t\ttarget specific device by its 40-digit device UUID
      --host HOST\t\taddress relaying the device service ports
      --config FILE\t\tYAML configuration file
      --log-file FILE\t\talso write logs to FILE
  -h, --help\t\t\tprints usage information
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="devrestore", add_help=False)
    parser.add_argument("-d", "--debug", action="store_true")
    parser.add_argument("-r", "--recovery", action="store_true")
    parser.add_argument("-f", "--filesystem", type=Path)
    parser.add_argument("-k", "--kernelcache", type=Path)
    parser.add_argument("-u", "--uuid")
    parser.add_argument("--host")
    parser.add_argument("--config")
    parser.add_argument("--log-file")
    parser.add_argument("-h", "--help", action="store_true")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> Optional[argparse.Namespace]:
    """Return parsed options, or ``None`` when usage should be printed."""

    parser = build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
    except SystemExit:
        return None
    if unknown or args.help:
        return None
    if args.uuid is not None and len(args.uuid) != UUID_LENGTH:
        return None
    return args


def print_usage(prog: str = "devrestore") -> None:
    print(USAGE.format(prog=prog))


def install_signal_handlers(token: CancellationToken) -> None:
    def _cancel(signum, frame):  # pragma: no cover - signal handling
        print("Exiting...", file=sys.stderr)
        token.cancel()

    for name in ("SIGINT", "SIGTERM", "SIGQUIT"):
        if hasattr(signal, name):
            signal.signal(getattr(signal, name), _cancel)
    if hasattr(signal, "SIGPIPE"):
        signal.signal(signal.SIGPIPE, signal.SIG_IGN)


def enter_recovery(transport: DeviceTransport, udid: Optional[str]) -> int:
    try:
        client = LockdownClient.create(transport)
    except ConnectionFailedError as exc:
        _LOGGER.error("lockdown connection failed", extra=extra_fields(detail=str(exc)))
        print("No device found, is it plugged in?")
        return EXIT_FAILURE
    try:
        print(f"Telling device with uuid {udid or '<any>'} to enter recovery mode.")
        client.enter_recovery()
    except RestoreError as exc:
        print(f"ERROR: Failed to enter recovery mode. {exc.describe()}")
        return EXIT_FAILURE
    finally:
        client.close()
    print("Device is successfully switching to recovery mode.")
    return EXIT_OK


def run_restore(
    args: argparse.Namespace,
    settings: RestoreSettings,
    transport: DeviceTransport,
    token: CancellationToken,
    *,
    channel_factory: Callable[[DeviceTransport, int], RestoredClient] = lambda t, port: RestoredClient.create(t, port=port),
) -> int:
    try:
        channel = channel_factory(transport, settings.restore_port)
    except ConnectionFailedError as exc:
        _LOGGER.error("restore service connection failed", extra=extra_fields(detail=str(exc)))
        if args.uuid:
            print(f"No device found with uuid {args.uuid}, is it plugged in?")
        else:
            print("No device found, is it plugged in?")
        return EXIT_FAILURE

    asr = ASRTransfer(
        transport,
        port=settings.asr.port,
        connect_attempts=settings.asr.connect_attempts,
        retry_delay=settings.asr.retry_delay,
        max_oob_requests=settings.asr.max_oob_requests,
        progress_every=settings.asr.progress_every,
    )
    targets = RestoreTargets(filesystem=args.filesystem, kernelcache=args.kernelcache)
    session = RestoreSession(channel, DataRequestDispatcher(channel, asr, targets))
    try:
        summary = session.run(token)
    except RestoreError as exc:
        print(f"ERROR: {exc.describe()}")
        return EXIT_FAILURE
    _LOGGER.info(
        "restore session finished",
        extra=extra_fields(
            messages=len(summary.results),
            failures=len(summary.failures),
            cancelled=summary.cancelled,
        ),
    )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args is None:
        print_usage(Path(sys.argv[0]).name or "devrestore")
        return EXIT_OK

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as exc:
        print(f"ERROR: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    level = logging.DEBUG if args.debug else getattr(logging, settings.logging.level)
    setup_logging("devrestore", level=level, log_file=args.log_file or settings.logging.file)

    transport = TCPDeviceTransport(args.host or settings.host, connect_timeout=settings.connect_timeout)
    if args.recovery:
        return enter_recovery(transport, args.uuid)

    token = CancellationToken()
    install_signal_handlers(token)
    return run_restore(args, settings, transport, token)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
