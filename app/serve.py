"""
Entry point for running the shortdrop server.

Usage:
    shortdrop [--port PORT] [--host HOST]
"""

import argparse

import qrcode
import uvicorn
from config import get_settings


def print_qr_code(url: str) -> None:
    """Print a QR code to the terminal."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=1,
        border=1,
    )
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="shortdrop link and file sharing")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to run on")
    parser.add_argument("--host", default=settings.host, help="Host to bind to")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    print(f"\n  shortdrop at {settings.base_url}\n")
    print_qr_code(settings.base_url)

    uvicorn.run("main:app", host=args.host, port=args.port, reload=args.reload, log_level="info")


if __name__ == "__main__":
    main()
