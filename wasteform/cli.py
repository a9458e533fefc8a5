"""
Command-line runner: scan one waste form image and print / save ScanResult JSON.

  python -m wasteform.cli form.jpg
  python -m wasteform.cli form.jpg --engine vision --pass3 --out result.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .config import Settings
from .errors import WasteFormError
from .pipeline import WasteFormPipeline

log = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Digitize a handwritten waste tracking form.")
    ap.add_argument("image", type=str, help="Photo / scan of the form (jpg, png)")
    ap.add_argument("--engine", choices=("tesseract", "vision"), default=None,
                    help="OCR engine (default: WASTEFORM_ENGINE or tesseract)")
    ap.add_argument("--pass3", action="store_true", help="Enable cell-only recovery pass")
    ap.add_argument("--sharpen", action="store_true",
                    help="Use the sharpen-only variant of pass 2 instead of masking")
    ap.add_argument("--items", type=str, default=None, help="Master item list JSON")
    ap.add_argument("--out", type=str, default=None, help="Write JSON here instead of stdout")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    settings = Settings.from_env()
    if args.engine:
        settings = replace(settings, engine=args.engine)
    if args.pass3:
        settings = replace(settings, enable_pass3=True)
    if args.sharpen:
        settings = replace(settings, pass2_mode="sharpen")
    if args.items:
        settings = replace(settings, items_path=Path(args.items))

    try:
        pipeline = WasteFormPipeline.from_settings(settings)
        result = pipeline.process_path(args.image)
    except WasteFormError as e:
        log.error("Scan failed: %s", e)
        return 1

    text = json.dumps(result, indent=2)
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        log.info("Wrote %s", args.out)
    else:
        print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
