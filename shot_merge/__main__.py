"""Entry point for Shot Merge.

Usage:
    python -m shot_merge                 Process ~/Downloads once
    python -m shot_merge -d FOLDER -v    Process FOLDER with debug output
    python -m shot_merge --watch         Keep processing as files arrive
"""

import argparse
import logging
import sys
from pathlib import Path

from shot_merge import __version__
from shot_merge.config import BACKEND_MAGICK, BACKEND_PILLOW, LANGUAGES, Config
from shot_merge.i18n import Messages

logger = logging.getLogger(__name__)


def build_parser(messages: Messages) -> argparse.ArgumentParser:
    """Build the argument parser with help text in the chosen language."""
    t = messages.t
    parser = argparse.ArgumentParser(prog="shot-merge", description=t("cli.description"))
    parser.add_argument("-d", "--work-dir", help=t("cli.option.workdir"))
    parser.add_argument("-v", "--verbose", action="store_true", help=t("cli.option.verbose"))
    parser.add_argument("-l", "--lang", choices=LANGUAGES, help=t("cli.option.lang"))
    parser.add_argument("--backend", choices=(BACKEND_PILLOW, BACKEND_MAGICK))
    parser.add_argument("--config", type=Path)
    parser.add_argument("--watch", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _preparse_language(argv: list[str]) -> str:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("-l", "--lang", default="auto")
    known, _ = pre.parse_known_args(argv)
    return known.lang


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the batch (or watch) and return the exit code."""
    from shot_merge.app import App

    argv = sys.argv[1:] if argv is None else argv
    args = build_parser(Messages(_preparse_language(argv))).parse_args(argv)

    cfg = Config(args.config)
    # Command-line values apply to this run only; they are not saved.
    if args.work_dir:
        cfg.work_dir = args.work_dir
    if args.lang:
        cfg.language = args.lang
    if args.backend:
        cfg.image_backend = args.backend

    messages = Messages(cfg.language)
    try:
        app = App(cfg, messages)
        app.setup_logging(verbose=args.verbose)
        app.print_banner()
        if args.watch:
            app.run_watch()
        else:
            app.run_once()
        print(messages.t("app.success"))
        return 0
    except Exception as exc:
        logger.error(messages.t("app.error", error=exc))
        logger.debug("Unhandled failure", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
