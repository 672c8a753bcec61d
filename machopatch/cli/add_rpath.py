"""Add an LC_RPATH load command to a thin Mach-O binary.
This will invalidate the binary's code signature, if any.
"""
import argparse
import logging
import pathlib
from typing import List, Optional

from machopatch.logger import machopatch_logger
from machopatch.macho import MachoParseError, add_rpath

logger = machopatch_logger.getChild(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    arg_parser = argparse.ArgumentParser(description="Add an LC_RPATH load command to a binary")
    arg_parser.add_argument("binary_path", type=str, help="Path to binary")
    arg_parser.add_argument(
        "output_path", type=str, help="Path to write the modified binary (must not already exist)",
    )
    arg_parser.add_argument("rpath", type=str, help="The runpath search path to be added to the binary")
    arg_parser.add_argument("-v", "--verbose", action="store_true", help="Log each parsing step")
    args = arg_parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    binary_data = bytearray(pathlib.Path(args.binary_path).read_bytes())
    try:
        cmdsize = add_rpath(binary_data, args.rpath)
    except (MachoParseError, ValueError) as e:
        logger.error(f"Failed to add LC_RPATH to {args.binary_path}: {e}")
        return 1

    # Pass 'x' so the call will throw an exception if the path already exists
    with open(args.output_path, "xb") as out_file:
        out_file.write(binary_data)

    logger.info(f"Added LC_RPATH {args.rpath} ({cmdsize} bytes), wrote {args.output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
