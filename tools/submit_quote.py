#!/usr/bin/env python3
"""Send a template and quote to a running assembler and save what comes back."""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

import requests

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("template", type=Path, help="Template PDF to upload")
    parser.add_argument("quote", type=Path, help="Quote JSON file")
    parser.add_argument("--options", type=Path, help="Assembly options JSON file")
    parser.add_argument("--output", type=Path, help="Save the assembled PDF here instead of printing the report")
    parser.add_argument(
        "--inspect",
        choices=("tokens", "fields"),
        help="Only list the placeholders or form fields the template contains",
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="Hostname (default 127.0.0.1)")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port (default 8000)")
    return parser.parse_args(argv)


def main() -> int:
    args = parse_args()
    base = f"http://{args.host}:{args.port}/api/assembly"
    url = f"{base}/{args.inspect}" if args.inspect else base
    params = {"format": "pdf"} if args.output and not args.inspect else None

    form = {"quote": args.quote.read_text()}
    if args.options:
        form["options"] = args.options.read_text()

    try:
        with args.template.open("rb") as handle:
            response = requests.post(
                url,
                params=params,
                data=form,
                files={"template": (args.template.name, handle, "application/pdf")},
                timeout=120,
            )
    except requests.RequestException as exc:
        print(f"Request failed: {exc}", file=sys.stderr)
        return 1

    print(f"{response.status_code} {response.reason}")
    if response.ok and response.headers.get("content-type", "").startswith("application/pdf"):
        args.output.write_bytes(response.content)
        print(f"Saved {len(response.content)} bytes to {args.output}")
        return 0

    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)
    return 0 if response.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
