#!/usr/bin/env python3
"""
CLI for the scadkit language.

Usage:
    python -m scadkit.dsl tokens FILE
    python -m scadkit.dsl check FILE [--ast]
    python -m scadkit.dsl run FILE [--lang scad|script] [--t T] [--timeout MS]
                                   [--no-worker] [--json] [-v]

Examples:
    # Check syntax
    python -m scadkit.dsl check examples/bracket.scad

    # Evaluate frame 0.25 of an animation and print mesh stats
    python -m scadkit.dsl run examples/gear.scad --t 0.25

    # Run a Python shape script, emitting the full response as JSON
    python -m scadkit.dsl run examples/enclosure.py --lang script --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path


def _read_source(path_str: str):
    source_path = Path(path_str)
    if not source_path.exists():
        print(f"Error: File not found: {source_path}", file=sys.stderr)
        return None, source_path
    return source_path.read_text(), source_path


def cmd_tokens(args):
    """Print the token stream of a source file."""
    from . import tokenize
    from .tokens import TokenType

    source, source_path = _read_source(args.file)
    if source is None:
        return 1

    failed = False
    for token in tokenize(source, str(source_path)):
        if token.type == TokenType.ERROR:
            failed = True
            print(f"{token.line}:{token.column}\tERROR\t{token.value.message}")
        else:
            print(f"{token.line}:{token.column}\t{token.type.name}\t{token.lexeme}")
    return 1 if failed else 0


def cmd_check(args):
    """Check a source file for syntax errors."""
    from . import parse_source, dump_ast

    source, source_path = _read_source(args.file)
    if source is None:
        return 1

    result = parse_source(source, str(source_path))
    if not result.success:
        errors = [d for d in result.diagnostics if d.severity.value == 'error']
        print(f"Parsing failed with {len(errors)} error(s):")
        for diag in result.diagnostics:
            print(diag.format())
        return 1

    print(f"OK: {source_path.name} - {len(result.statements)} statement(s), no errors")
    warnings = [d for d in result.diagnostics if d.severity.value == 'warning']
    if warnings:
        print(f"  {len(warnings)} warning(s)")
    if args.ast:
        print(dump_ast(result.statements))
    return 0


def cmd_run(args):
    """Evaluate a file through the job manager and report the mesh."""
    from ..dsl.errors import JobError
    from ..jobs import JobManager

    source, source_path = _read_source(args.file)
    if source is None:
        return 1

    def show_progress(event):
        logging.getLogger('scadkit.cli').info("[%3.0f%%] %s: %s", event.progress * 100,
                                              event.stage.value, event.message)

    with JobManager(use_worker=not args.no_worker) as jobs:
        handle = jobs.submit(source, language=args.lang, t=args.t, timeout=args.timeout,
                             on_progress=show_progress, progress_detail=args.verbose)
        try:
            response = handle.result()
        except JobError as e:
            if args.json:
                print(json.dumps({"success": False, "errors": [e.diagnostic.to_dict()]}))
            else:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    if args.json:
        print(json.dumps(response.to_dict()))
        return 0 if response.success else 1

    for line in response.echoes:
        print(f"ECHO: {line}")
    if not response.success:
        print(f"Evaluation failed with {len(response.errors)} error(s):")
        for error in response.errors:
            where = f"line {error['line']}: " if 'line' in error else ""
            print(f"  {where}{error['code']} {error['message']}")
        return 1

    mesh = response.geometry
    if mesh is None:
        print(f"OK: {source_path.name} - no geometry ({response.execution_time:.1f} ms)")
        return 0
    print(f"OK: {source_path.name} - {mesh.vertex_count} vertices, {mesh.face_count} faces, "
          f"volume {mesh.volume:.3f} ({response.execution_time:.1f} ms)")
    print(f"  bounds: {list(mesh.bounds_min)} .. {list(mesh.bounds_max)}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='python -m scadkit.dsl',
        description='scadkit language tools',
    )

    subparsers = parser.add_subparsers(dest='action', required=True)

    # tokens command
    tokens_parser = subparsers.add_parser('tokens', help='Print the tokens of a file')
    tokens_parser.add_argument('file', help='Source file')

    # check command
    check_parser = subparsers.add_parser('check', help='Check a file for syntax errors')
    check_parser.add_argument('file', help='Source file')
    check_parser.add_argument('--ast', action='store_true', help='Also print the parsed tree')

    # run command
    run_parser = subparsers.add_parser('run', help='Evaluate a file and report the mesh')
    run_parser.add_argument('file', help='Source file')
    run_parser.add_argument('--lang', choices=['scad', 'script'], default='scad',
                            help='Source language (default: scad)')
    run_parser.add_argument('--t', type=float, default=0.0, help='Animation parameter $t')
    run_parser.add_argument('--timeout', type=float, metavar='MS',
                            help='Timeout in milliseconds')
    run_parser.add_argument('--no-worker', action='store_true',
                            help='Evaluate in this thread instead of a worker thread')
    run_parser.add_argument('--json', action='store_true', help='Print the response as JSON')
    run_parser.add_argument('-v', '--verbose', action='store_true', help='Log progress')

    args = parser.parse_args(argv)

    if getattr(args, 'verbose', False):
        logging.basicConfig(level=logging.INFO, format='%(name)s: %(message)s')
    else:
        from ..config import configure_logging
        logging.basicConfig(format='%(levelname)s %(name)s: %(message)s')
        configure_logging()

    if args.action == 'tokens':
        return cmd_tokens(args)
    elif args.action == 'check':
        return cmd_check(args)
    elif args.action == 'run':
        return cmd_run(args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
