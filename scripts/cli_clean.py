# scripts/cli_clean.py
r"""
CLI metadata scrubber (no web server needed).
Usage examples (from project root, with your venv activated):

  python scripts/cli_clean.py path/to/photo.heic
  python scripts/cli_clean.py C:\\Users\\you\\Desktop\\clip.mov --strategy reencode
  python scripts/cli_clean.py path/to/folder --jobs 4  (processes all supported files inside, recursively)

Outputs are written next to the originals as *_clean.ext
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# ensures "mediaclean" is importable even when running by path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediaclean import settings
from mediaclean.batch import BatchOrchestrator
from mediaclean.errors import CleaningError
from mediaclean.models import CleaningConfiguration, CleaningOutcome, MediaAsset, VideoStrategy
from mediaclean.storage import LocalStorage


def iter_files(target: Path):
    if target.is_file():
        yield target
    else:
        for p in sorted(target.rglob("*")):
            if p.is_file() and p.suffix.lower() in settings.ALLOWED_EXTENSIONS and "_clean" not in p.stem:
                yield p


def collect_assets(root: Path):
    assets = []
    for f in iter_files(root):
        try:
            assets.append(MediaAsset.from_path(f))
        except CleaningError as e:
            print(f"• Skipping {f.name}: {e}")
    return assets


def build_config(args) -> CleaningConfiguration:
    return CleaningConfiguration(
        video_strategy=VideoStrategy(args.strategy),
        bake_orientation=not args.no_bake_orientation,
        force_srgb=not args.no_srgb,
        heic_to_jpeg=args.heic_to_jpeg,
        jpeg_quality=args.jpeg_quality,
        heic_quality=args.heic_quality,
        preserve_hdr=args.preserve_hdr,
        max_concurrent_operations=args.track_jobs,
        preserve_file_date=args.preserve_file_date,
        delete_original_file=args.delete_original,
        save_to_library=args.save_to_library,
    )


def report(outcome: CleaningOutcome) -> None:
    if outcome.success:
        removed = ", ".join(k.value for k in outcome.removed) or "nothing found"
        print(f"✅ Cleaned: {outcome.asset.name} → {outcome.output_locator.name} ({removed})")
    else:
        print(f"❌ Failed to clean {outcome.asset.name}: {outcome.error}")


def finish(outcome: CleaningOutcome, storage: LocalStorage, config: CleaningConfiguration) -> None:
    """Caller-layer steps that only run after a successful outcome."""
    if not outcome.success:
        return
    try:
        if config.save_to_library:
            storage.save_to_library(outcome.output_locator, outcome.asset.kind)
        if config.delete_original_file:
            storage.delete_original(outcome.asset)
    except CleaningError as e:
        print(f"⚠️ {outcome.asset.name}: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Remove metadata from photos and videos (no server needed).")
    parser.add_argument("path", help="File or folder to clean")
    parser.add_argument("--strategy", choices=[s.value for s in VideoStrategy],
                        default=VideoStrategy.SMART_AUTO.value, help="Video cleaning strategy")
    parser.add_argument("--no-bake-orientation", action="store_true",
                        help="Do not rotate pixels to match the EXIF orientation")
    parser.add_argument("--no-srgb", action="store_true", help="Keep the source color profile")
    parser.add_argument("--heic-to-jpeg", action="store_true", help="Write HEIC/HEIF photos as JPEG")
    parser.add_argument("--jpeg-quality", type=float, default=0.90)
    parser.add_argument("--heic-quality", type=float, default=0.85)
    parser.add_argument("--preserve-hdr", action="store_true", help="Re-encode HDR video as HEVC")
    parser.add_argument("--jobs", type=int, default=settings.BATCH_CONCURRENCY,
                        help="Files cleaned at the same time")
    parser.add_argument("--track-jobs", type=int, default=4,
                        help="Tracks re-encoded at the same time within one video")
    parser.add_argument("--delete-original", action="store_true")
    parser.add_argument("--save-to-library", action="store_true",
                        help=f"Also copy cleaned files into {settings.LIBRARY_DIR}")
    parser.add_argument("--preserve-file-date", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    root = Path(args.path).expanduser().resolve()
    if not root.exists():
        print(f"❌ Not found: {root}")
        sys.exit(1)

    assets = collect_assets(root)
    if not assets:
        print("ℹ️ Nothing cleaned. Did you pass a supported photo or video?")
        return 0

    config = build_config(args)
    storage = LocalStorage(beside_source=True)
    orchestrator = BatchOrchestrator(storage, max_in_flight=args.jobs)

    def on_item_complete(outcome):
        report(outcome)
        finish(outcome, storage, config)

    try:
        outcomes = asyncio.run(orchestrator.run(assets, config, on_item_complete=on_item_complete))
    except KeyboardInterrupt:
        print("ℹ️ Cancelled.")
        return 130

    failed = sum(1 for o in outcomes if not o.success)
    if failed:
        print(f"ℹ️ {len(outcomes) - failed} cleaned, {failed} failed.")
    return 1 if failed == len(outcomes) else 0


if __name__ == "__main__":
    sys.exit(main())
