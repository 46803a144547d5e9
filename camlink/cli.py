"""
camlink command line.

    camlink serve                       run the signaling server
    camlink desktop --server URL        pair a phone and save a captured photo
    camlink mobile LINK                 stream this machine's camera to a desktop
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

from camlink.client import DesktopCameraLink, LinkStatus, MobileCameraLink, SignalingClient
from camlink.client.base import TERMINAL_STATUSES
from camlink.config.defaults import load_defaults_from_env
from camlink.core.streaming.capture import decode_data_url
from camlink.main import configure_logging, run
from camlink.utils.error_handler import CamLinkError, get_user_friendly_message

logger = logging.getLogger(__name__)


def _output_path(base: Path, index: int) -> Path:
    if index == 0:
        return base
    return base.with_name(f"{base.stem}-{index}{base.suffix}")


async def run_desktop(args) -> int:
    settings = load_defaults_from_env()
    output = Path(args.output)
    saved = []

    def save(data_url: str):
        path = _output_path(output, len(saved))
        path.write_bytes(decode_data_url(data_url))
        saved.append(path)
        print(f"Saved {path}")

    link = DesktopCameraLink(
        SignalingClient(args.server, path=args.path),
        origin=args.origin,
        on_capture=save,
        ice_servers=settings.ICE_SERVERS,
    )
    try:
        await link.start()
        await link.wait_for_status(LinkStatus.READY, *TERMINAL_STATUSES)
        if link.status is not LinkStatus.READY:
            print(link.status_message)
            return 1

        print("\nScan this code with your phone:\n")
        print(link.qr_ascii())
        print(link.pairing_link)

        status = await link.wait_for_status(LinkStatus.CONNECTED, *TERMINAL_STATUSES)
        if status is not LinkStatus.CONNECTED:
            print(link.status_message)
            return 1

        if args.remote:
            print("Streaming. Press the capture button on the phone, Ctrl+C to stop.")
            await link.wait_for_status(*TERMINAL_STATUSES)
            return 0 if saved else 1

        countdown = settings.CAPTURE_COUNTDOWN if args.countdown is None else args.countdown
        data_url = await link.capture_after(
            countdown, on_tick=lambda remaining: print(f"Capturing in {remaining}...")
        )
        if data_url is None:
            print("No video frame received from the phone yet")
            return 1
        return 0
    except CamLinkError as e:
        print(get_user_friendly_message(e))
        return 1
    finally:
        await link.close()


async def run_mobile(args) -> int:
    settings = load_defaults_from_env()
    try:
        link = MobileCameraLink.from_pairing_link(
            args.link,
            server_url=args.server,
            device=args.device,
            fmt=args.format,
            ice_servers=settings.ICE_SERVERS,
        )
    except ValueError as e:
        print(e)
        return 2

    try:
        await link.start()
        status = await link.wait_for_status(LinkStatus.CONNECTED, *TERMINAL_STATUSES)
        if status is not LinkStatus.CONNECTED:
            print(link.status_message)
            return 1

        print("Streaming camera to desktop. Ctrl+C to stop.")
        if args.capture:
            # Give the data channel a moment to open on both ends
            for _ in range(50):
                if link.request_capture():
                    print("Capture requested")
                    break
                await asyncio.sleep(0.1)

        await link.wait_for_status(*TERMINAL_STATUSES)
        print(link.status_message)
        return 0 if link.status is LinkStatus.CLOSED else 1
    except CamLinkError as e:
        print(get_user_friendly_message(e))
        return 1
    finally:
        await link.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="camlink", description="Use a phone as a camera for the desktop"
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the signaling server")
    serve.add_argument("--host", help="Bind address")
    serve.add_argument("--port", type=int, help="Bind port")
    serve.add_argument(
        "--session-timeout", type=float, help="Seconds a pairing code stays valid"
    )
    serve.add_argument("--public-origin", help="Origin used in pairing links")

    desktop = sub.add_parser("desktop", help="Pair a phone and capture a photo")
    desktop.add_argument("--server", required=True, help="Signaling server URL")
    desktop.add_argument("--path", default="/api/signaling", help="Signaling mount path")
    desktop.add_argument("--origin", help="Origin of the phone web app for pairing links")
    desktop.add_argument("--output", default="capture.jpg", help="Where to save the photo")
    desktop.add_argument("--countdown", type=int, help="Seconds before capturing")
    desktop.add_argument(
        "--remote", action="store_true", help="Wait for captures triggered from the phone"
    )

    mobile = sub.add_parser("mobile", help="Stream a camera to a paired desktop")
    mobile.add_argument("link", help="Pairing link shown by the desktop")
    mobile.add_argument("--server", help="Signaling server URL (default: link origin)")
    mobile.add_argument("--device", help="Camera device or media file")
    mobile.add_argument("--format", help="FFmpeg input format (v4l2, avfoundation, dshow)")
    mobile.add_argument(
        "--capture", action="store_true", help="Ask the desktop to take a photo once connected"
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        settings = load_defaults_from_env()
        overrides = {
            "SERVER_HOST": args.host,
            "SERVER_PORT": args.port,
            "SESSION_TIMEOUT": args.session_timeout,
            "PUBLIC_ORIGIN": args.public_origin,
            "LOG_LEVEL": args.log_level.upper() if args.log_level else None,
        }
        settings = dataclasses.replace(
            settings, **{k: v for k, v in overrides.items() if v is not None}
        )
        run(settings)
        return 0

    configure_logging(args.log_level or load_defaults_from_env().LOG_LEVEL)
    runner = run_desktop if args.command == "desktop" else run_mobile
    try:
        return asyncio.run(runner(args))
    except KeyboardInterrupt:
        print("\nStopped")
        return 0


if __name__ == "__main__":
    sys.exit(main())
