from __future__ import annotations

import argparse
import sys
from pathlib import Path

from abslot.app.runner import run


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="abslot")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_apply = sub.add_parser("apply", help="Bind CTA variants on an HTML page")
    p_apply.add_argument("--config", default="config/engine.yaml")
    p_apply.add_argument("--html", required=True, help="Rendered page markup")
    p_apply.add_argument("--url", required=True, help="Absolute URL the page is served at")
    p_apply.add_argument("--referrer", default="")
    p_apply.add_argument("--viewport-width", type=int, default=1280)
    p_apply.add_argument("--cookie", default=None, help="Cookie header for the page load")
    p_apply.add_argument("--step", type=int, default=None, help="Current lead-form step")
    p_apply.add_argument("--out", default=None, help="Write markup here instead of stdout")

    args = parser.parse_args(argv)

    if args.cmd == "apply":
        html = run(
            args.config,
            args.html,
            url=args.url,
            referrer=args.referrer,
            viewport_width=args.viewport_width,
            cookie_header=args.cookie,
            step=args.step,
        )
        if args.out:
            Path(args.out).write_text(html)
        else:
            sys.stdout.write(html)
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
