import argparse
import asyncio
import logging
import signal
import sys
import time

import tqdm

from stockmeta.config import Settings
from stockmeta.controller import RunController
from stockmeta.errors import ConfigurationError, ExportError
from stockmeta.exporter import STOCK_SITES, save_to_csv
from stockmeta.file_processor import get_media_files, stage_files
from stockmeta.models import ERROR, MODE_METADATA, MODE_PROMPT
from stockmeta.observer import RunObserver


class TqdmObserver(RunObserver):
    """Shows run progress on a tqdm bar and prints notifications above it"""

    def __init__(self, total):
        self.bar = tqdm.tqdm(total=total, desc="Generating", unit="file")

    def on_progress(self, snapshot):
        if snapshot.current > self.bar.n:
            self.bar.update(snapshot.current - self.bar.n)
        self.bar.set_postfix_str(snapshot.status)

    def on_notify(self, message, level):
        if level in ("warning", "error"):
            self.bar.write(f"[{level}] {message}")

    def on_complete(self, success, total):
        self.bar.write(f"Generation complete: {success} of {total} successful")

    def close(self):
        self.bar.close()


async def _run(controller):
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.stop)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl-C raises KeyboardInterrupt instead
        pass
    try:
        return await controller.start()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


def apply_overrides(settings, args):
    changes = {}
    if args.mode:
        changes["active_tab"] = args.mode
    if args.batch_size is not None:
        changes["batch_size"] = args.batch_size
    if args.keywords:
        changes["keywords_count"] = args.keywords
    for flag in ("white_bg", "transparent_bg", "vector", "illustration"):
        if getattr(args, flag):
            changes.setdefault("advance_title", {})[flag] = True
    if changes:
        settings.update_controls(**changes)
    if args.model:
        settings.data["model"] = args.model
    if args.site:
        settings.data["selected_stock_site"] = args.site
    if args.extension:
        settings.data["file_extension"] = args.extension


def cmd_generate(args):
    start_time = time.time()
    settings = Settings.load(args.settings)
    apply_overrides(settings, args)
    if args.save:
        settings.save()

    media_files = get_media_files(args.folder)
    if not media_files:
        print("No media files found!")
        return 1

    items = stage_files(media_files)
    failed = [item for item in items if item.status == ERROR]
    print(f"Found {len(media_files)} media files")
    print(f"Ready: {len(items) - len(failed)} | Failed to prepare: {len(failed)}")

    observer = TqdmObserver(total=len(items) - len(failed))
    controller = RunController(settings, observer=observer)
    controller.stage(items)
    try:
        state = asyncio.run(_run(controller))
    except ConfigurationError as e:
        observer.close()
        print(f"Error: {e}")
        return 2
    observer.close()

    if state.stopped:
        print("Generation stopped.")
    try:
        csv_path = save_to_csv(
            controller.results,
            site=settings.selected_stock_site,
            file_extension=settings.file_extension,
            output_dir=args.output_dir,
            csv_path=args.output,
        )
    except ExportError as e:
        print(f"Nothing exported: {e}")
        return 1

    total_time = time.time() - start_time
    avg_time = total_time / state.total if state.total else 0
    print("\n=== Performance Summary ===")
    print(f"Files processed this session: {state.processed}/{state.total}")
    print(f"Successful: {state.success}")
    print(f"Total time: {total_time:.2f} seconds")
    print(f"Average time per file: {avg_time:.2f} seconds")
    print(f"Results saved to {csv_path}")
    return 0


def cmd_keys(args):
    settings = Settings.load(args.settings, use_env=False)
    if args.action == "add":
        settings.add_api_key(args.key)
        settings.save()
        print(f"Stored {len(settings.api_keys)} key(s)")
    elif args.action == "remove":
        settings.remove_api_key(args.key)
        settings.save()
        print(f"Stored {len(settings.api_keys)} key(s)")
    else:
        for i, key in enumerate(settings.api_keys, start=1):
            print(f"#{i} {key[:4]}...{key[-4:]}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="stockmeta", description="Generate stock marketplace metadata with Gemini")
    parser.add_argument("--settings", default=None, help="Settings JSON file")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate metadata for every file in a folder")
    gen.add_argument("folder")
    gen.add_argument("--site", choices=sorted(STOCK_SITES))
    gen.add_argument("--mode", choices=[MODE_METADATA, MODE_PROMPT])
    gen.add_argument("--batch-size", type=int)
    gen.add_argument("--keywords", type=int, help="Maximum keyword count")
    gen.add_argument("--model")
    gen.add_argument("--extension", help="Rewrite file extensions in the CSV (e.g. jpg, eps)")
    gen.add_argument("--white-bg", action="store_true")
    gen.add_argument("--transparent-bg", action="store_true")
    gen.add_argument("--vector", action="store_true")
    gen.add_argument("--illustration", action="store_true")
    gen.add_argument("--output", help="CSV path (defaults to <site>_metadata.csv)")
    gen.add_argument("--output-dir", default=".")
    gen.add_argument("--save", action="store_true", help="Persist these options to the settings file")
    gen.set_defaults(func=cmd_generate)

    keys = sub.add_parser("keys", help="Manage stored API keys")
    keys.add_argument("action", choices=["add", "remove", "list"])
    keys.add_argument("key", nargs="?")
    keys.set_defaults(func=cmd_keys)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "keys" and args.action != "list" and not args.key:
        parser.error("a key is required for add/remove")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
