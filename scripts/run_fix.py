from __future__ import annotations

import os, sys
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import argparse
import json
from typing import Dict, List, Optional, Union

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
from fixloop.config import FixLoopSettings
from fixloop.errors import FixLoopError
from fixloop.services.execution.service import PassOrchestrator
from fixloop.services.log_service import logger

EXIT_CLEAN = 0
EXIT_REMAINING = 1
EXIT_ERRORED = 2


def _parse_list(arg: Optional[str]) -> Optional[List[str]]:
    if not arg:
        return None
    return [x.strip() for x in arg.split(",") if x.strip()]


def _parse_options(pairs: List[str]) -> Optional[Dict[str, Union[bool, str]]]:
    """``--option memory-limit=1G --option no-interaction`` -> {"memory-limit": "1G", "no-interaction": True}"""
    if not pairs:
        return None
    options: Dict[str, Union[bool, str]] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        options[key.strip()] = value.strip() if sep else True
    return options


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FixLoop - multi-pass PHPStan error fixer")
    parser.add_argument("--project", type=str, default=None, help="Project root (default: FIXLOOP_PROJECT_ROOT or cwd)")
    parser.add_argument("--paths", type=str, default=None, help="Comma separated paths to analyse, relative to the project")
    parser.add_argument("--level", type=int, default=None, help="PHPStan rule level (0-10)")
    parser.add_argument("--max-passes", type=int, default=None, help="Upper bound on fix passes")
    parser.add_argument("--option", action="append", default=[], help="PHPStan option key[=value], repeatable")
    parser.add_argument("--phpstan-binary", type=str, default=None)
    parser.add_argument("--single-pass", action="store_true", help="One pass, no type/flow caches")
    parser.add_argument("--keep-backups", action="store_true", help="Leave <file>.fixloop.bak next to fixed files")
    parser.add_argument("--no-locking", action="store_true", help="Single-process mode without file locks")
    parser.add_argument("--json", action="store_true", help="Print the run report as JSON on stdout")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    env_path = os.path.join(PROJECT_ROOT, ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)

    overrides = {
        "project_root": args.project,
        "paths": _parse_list(args.paths),
        "level": args.level,
        "max_passes": args.max_passes,
        "options": _parse_options(args.option),
        "phpstan_binary": args.phpstan_binary,
        "smart_mode": False if args.single_pass else None,
        "keep_backups": True if args.keep_backups else None,
        "enable_locking": False if args.no_locking else None,
    }

    try:
        settings = FixLoopSettings.from_env(**overrides)
        logger.info(f"Project directory: {settings.project_root}")
        result = PassOrchestrator.from_settings(settings).run()
    except PydanticValidationError as e:
        logger.error(f"Invalid settings: {e}")
        return EXIT_ERRORED
    except FixLoopError as e:
        logger.error(f"Error during execution: {e}")
        return EXIT_ERRORED

    report = result.to_dict()
    if args.json:
        print(json.dumps(report, ensure_ascii=False, indent=2))
    else:
        logger.info("END_EXECUTION_RESULT_JSON")
        logger.debug(json.dumps(report, ensure_ascii=False))

    if result.status == "errored":
        return EXIT_ERRORED
    return EXIT_CLEAN if result.remaining_count == 0 else EXIT_REMAINING


if __name__ == "__main__":
    sys.exit(main())
