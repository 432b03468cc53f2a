import argparse
import logging
import sys
from pathlib import Path

import yaml

import utils
from aggregator import aggregate_selection, progress_enabled
from output import OK, ConflictChoice, Destinations, dispatch
from path_formatter import PathMode
from selection import AggregationConfig, selection_from_arguments
from utils import (
    CONFLICT_POLICIES,
    DEFAULT_CONFIG,
    ConfigNotFoundError,
    InvalidConfigError,
    find_config_file,
    load_and_validate_config,
    validate_config,
)

__version__ = "0.1.4"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 3

INIT_FILENAME = "cxt.yml"


def build_parser():
    parser = argparse.ArgumentParser(
        prog="cxt",
        description=(
            "Aggregate file and directory contents and send them to the "
            "clipboard (default), a file, or stdout."
        ),
    )
    parser.add_argument(
        "paths",
        nargs="*",
        help="Files, directories or glob patterns to aggregate.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    selection_group = parser.add_argument_group("Selection")
    selection_group.add_argument(
        "-t",
        "--tui",
        action="store_true",
        help="Pick files and directories in an interactive terminal browser.",
    )
    selection_group.add_argument(
        "--hidden",
        action="store_true",
        help="Include hidden files when walking directories.",
    )
    selection_group.add_argument(
        "-i",
        "--ignore",
        action="append",
        default=[],
        metavar="PATH",
        help="Ignore a file or directory. Can be used multiple times.",
    )

    header_group = parser.add_argument_group("Headers")
    header_group.add_argument(
        "-r",
        "--relative",
        action="store_true",
        help="Use paths relative to the current directory in headers.",
    )
    header_group.add_argument(
        "-n",
        "--no-path",
        action="store_true",
        help="Disable file path headers.",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "-p",
        "--print",
        dest="print_",
        action="store_true",
        help="Print the content to stdout (also copies it to the clipboard).",
    )
    output_group.add_argument(
        "-w",
        "--write",
        metavar="FILE",
        help="Write the content to FILE.",
    )
    output_group.add_argument(
        "--no-clipboard",
        action="store_true",
        help="Never copy to the clipboard.",
    )
    # Kept for scripts written against earlier releases.
    output_group.add_argument(
        "--ci",
        dest="no_clipboard",
        action="store_true",
        help=argparse.SUPPRESS,
    )
    output_group.add_argument(
        "--on-conflict",
        choices=CONFLICT_POLICIES,
        help="What to do when the --write target exists (default: ask).",
    )

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument(
        "--config",
        metavar="FILE",
        help=f"YAML settings file (default: {' or '.join(utils.DEFAULT_CONFIG_FILENAMES)} if present).",
    )
    config_group.add_argument(
        "--init",
        action="store_true",
        help=f"Write a default {INIT_FILENAME} in the current directory and exit.",
    )
    config_group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show extra details to help solve problems.",
    )
    return parser


def write_default_config(target):
    if target.exists():
        logging.error("Config file '%s' already exists. Aborting init.", target)
        sys.exit(EXIT_FAILURE)
    try:
        with open(target, 'w', encoding='utf-8') as f:
            f.write("# Default cxt configuration\n")
            yaml.safe_dump(DEFAULT_CONFIG, f, sort_keys=False)
    except OSError as exc:
        logging.error("Failed to write config: %s", exc)
        sys.exit(EXIT_FAILURE)
    logging.info("Created default configuration at %s", target.resolve())


def load_config(config_path, cwd):
    """Return the validated configuration for this run."""
    if config_path is None:
        config_path = find_config_file(cwd)
        if config_path is not None:
            logging.info("Auto-discovered config file: %s", config_path)

    if config_path is None:
        return validate_config({}, source="<defaults>")
    return load_and_validate_config(config_path)


def resolve_ignore_paths(config_ignore, cli_ignore):
    """Validate ignore paths; a missing path from the command line is fatal."""
    paths = []
    for ignore_path in config_ignore:
        if Path(ignore_path).exists():
            paths.append(Path(ignore_path))
        else:
            logging.warning("Ignore path from config does not exist: %s", ignore_path)
    for ignore_path in cli_ignore:
        if not Path(ignore_path).exists():
            raise InvalidConfigError(f"Ignore path does not exist: {ignore_path}")
        paths.append(Path(ignore_path))
    return paths


def build_aggregation_config(args, config, cwd):
    if args.relative or args.no_path:
        relative, no_path = args.relative, args.no_path
    else:
        mode = config['headers']['mode']
        relative, no_path = mode == 'relative', mode == 'none'

    return AggregationConfig.from_flags(
        relative=relative,
        no_path=no_path,
        hidden=args.hidden or config['walk']['hidden'],
        ignore=resolve_ignore_paths(config['walk']['ignore'], args.ignore),
        base=cwd,
    )


def print_summary(aggregation, report):
    title = "Summary"
    size_kb = aggregation.size / 1024

    print(f"\n--- {title} ---", file=sys.stderr)
    print(f"  Files:            {aggregation.file_count}", file=sys.stderr)
    print(f"  Size:             {size_kb:.2f} KB", file=sys.stderr)
    for outcome in report.outcomes:
        label = f"{outcome.destination.capitalize()}:"
        status = outcome.status
        if outcome.detail:
            status = f"{status} ({outcome.detail})"
        print(f"  {label:<18}{status}", file=sys.stderr)
    if aggregation.warnings:
        print(f"  Skipped:          {len(aggregation.warnings)}", file=sys.stderr)
        for skipped in aggregation.warnings:
            print(f"    - {skipped.describe()}", file=sys.stderr)
    print("-" * (len(title) + 8), file=sys.stderr)


def exit_code_for(aggregation, report):
    if report.all_failed:
        return EXIT_FAILURE
    if aggregation.warnings or report.failed:
        return EXIT_PARTIAL
    return EXIT_OK


def _log_outcomes(aggregation, report, destinations):
    count = aggregation.file_count
    for outcome in report.outcomes:
        if outcome.status != OK:
            continue
        if outcome.destination == 'clipboard':
            logging.info("Copied content from %d files to clipboard.", count)
        elif outcome.destination == 'file':
            logging.info("Wrote content from %d files to %s", count, destinations.file)


def main(argv=None):
    """Parse arguments, run the pipeline and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging before anything below logs, so -v takes effect early.
    prelim_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=prelim_level, format='%(levelname)s: %(message)s')

    cwd = Path.cwd()

    if args.init:
        write_default_config(cwd / INIT_FILENAME)
        sys.exit(EXIT_OK)

    try:
        config = load_config(args.config, cwd)
    except ConfigNotFoundError:
        logging.error(
            "Could not find the configuration file '%s'. "
            "Check the filename and your current working directory: %s",
            args.config,
            cwd,
        )
        logging.debug("Missing configuration details:", exc_info=True)
        sys.exit(EXIT_FAILURE)
    except InvalidConfigError as e:
        logging.error("Invalid configuration: %s", e)
        logging.debug("Configuration validation traceback:", exc_info=True)
        sys.exit(EXIT_FAILURE)

    # The -v (DEBUG) flag always overrides the config file's setting.
    if not args.verbose:
        level_str = config['logging']['level']
        logging.getLogger().setLevel(getattr(logging, level_str.upper(), logging.INFO))

    if not args.paths and not args.tui:
        parser.print_help(sys.stderr)
        return EXIT_FAILURE

    try:
        agg_config = build_aggregation_config(args, config, cwd)
        destinations = Destinations.from_flags(
            print_=args.print_,
            write=args.write,
            clipboard=config['output']['clipboard'] and not args.no_clipboard,
        )
        on_conflict = ConflictChoice.from_policy(
            args.on_conflict or config['output']['on_conflict']
        )
        selection = selection_from_arguments(args.paths) if args.paths else None

        if args.tui:
            # Imported here: the terminal driver needs termios, which only
            # exists on POSIX systems.
            from terminal import run_picker

            result = run_picker(
                cwd,
                selection=selection,
                relative=agg_config.mode is PathMode.RELATIVE,
                no_header=agg_config.mode is PathMode.NONE,
                hidden=agg_config.hidden,
                ignore=agg_config.ignore,
                base=cwd,
            )
            if result is None:
                logging.info("Selection cancelled; nothing was written.")
                return EXIT_OK
            selection, agg_config = result
    except InvalidConfigError as e:
        logging.error("%s", e)
        logging.debug("Validation traceback:", exc_info=True)
        sys.exit(EXIT_FAILURE)

    logging.debug("Output: %s", ", ".join(destinations.names()))
    aggregation = aggregate_selection(
        selection, agg_config, progress=progress_enabled()
    )
    if not aggregation.files:
        logging.error("No readable files found in the selection; nothing was written.")
        return EXIT_FAILURE

    report = dispatch(
        aggregation.buffer,
        destinations,
        on_conflict=on_conflict,
    )
    _log_outcomes(aggregation, report, destinations)
    print_summary(aggregation, report)

    return exit_code_for(aggregation, report)


if __name__ == "__main__":
    sys.exit(main())
