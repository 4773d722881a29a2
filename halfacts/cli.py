"""
Command-line entry point, invoked once per TU by the compiler driver.

    hal-facts -out-file-succ-ret succ.yaml -out-file-api api.yaml \
              -out-file-loops loops.yaml -out-file-periph-struct periph.yaml \
              -I Inc -isystem Drivers/CMSIS -D STM32F407xx src/stm32f4xx_hal_gpio.c
"""

import sys
import logging
import argparse
from typing import List, Optional

from halfacts.config import DEFAULT_LOCK_TIMEOUT, EngineConfig
from halfacts.engine import HalFactsEngine
from halfacts.errors import ConfigurationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hal-facts",
        description="Extract HAL facts (API surface, success values, loops, "
                    "peripheral structs) from one translation unit.",
    )
    parser.add_argument("source", help="C source file of the translation unit")
    parser.add_argument("-out-file-succ-ret", dest="succ_ret_file",
                        help="success-value cache (YAML)")
    parser.add_argument("-out-file-api", dest="api_file",
                        help="API name cache (YAML)")
    parser.add_argument("-out-file-loops", dest="loop_file",
                        help="loop span cache (YAML)")
    parser.add_argument("-out-file-periph-struct", dest="periph_struct_file",
                        help="peripheral struct name cache (YAML)")
    parser.add_argument("-I", dest="include_dirs", action="append", default=[],
                        metavar="DIR", help="add an include directory")
    parser.add_argument("-isystem", dest="system_include_dirs", action="append", default=[],
                        metavar="DIR", help="add a system include directory")
    parser.add_argument("-D", dest="defines", action="append", default=[],
                        metavar="NAME[=VALUE]", help="predefine a macro")
    parser.add_argument("-lock-timeout", dest="lock_timeout", type=float,
                        default=DEFAULT_LOCK_TIMEOUT,
                        help="seconds to wait on a cache lock before retrying")
    parser.add_argument("-v", dest="verbose", action="count", default=0,
                        help="more logging (-v info, -vv debug)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    config = EngineConfig(
        succ_ret_file=args.succ_ret_file,
        api_file=args.api_file,
        loop_file=args.loop_file,
        periph_struct_file=args.periph_struct_file,
        include_dirs=args.include_dirs,
        system_include_dirs=args.system_include_dirs,
        defines=args.defines,
        lock_timeout=args.lock_timeout,
    )
    try:
        engine = HalFactsEngine(config)
    except ConfigurationError as e:
        print(f"hal-facts: error: {e}", file=sys.stderr)
        return 1

    report = engine.run(args.source)
    logger.info("Finished %s", report.source_file)
    return 0


if __name__ == "__main__":
    sys.exit(main())
