# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Command-line interface for intuneappbuilder.

This module provides the main CLI entry point for the iab tool.

Commands:

    pack: Encrypt files or directories into .intunewin artifacts
    publish: Upload packed artifacts to Intune and commit them

Example:
    Pack an MSI:
        ```bash
        $ iab pack -s installers/Setup.msi -o out
        ```

    Pack a directory with an explicit setup file:
        ```bash
        $ iab pack -s installers/MyApp --setup-file install.exe -o out
        ```

    Publish everything packed into a directory:
        ```bash
        $ iab publish -s out --verbose
        ```

Exit Codes:

- 0: Success
- 1: Error (configuration, packaging, network, or publish failure)

Note:
    The CLI uses argparse for command parsing. Each command has its own
    handler function (cmd_<command>). Verbose mode shows full tracebacks on
    errors for debugging. Debug mode implies verbose mode and also logs every
    Graph request.
"""

from __future__ import annotations

import argparse
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
import sys

from intuneappbuilder.auth import CredentialManager
from intuneappbuilder.build.packager import find_package_files, read_package
from intuneappbuilder.config import load_settings
from intuneappbuilder.core import pack_source, publish_package
from intuneappbuilder.exceptions import (
    ConfigError,
    IABError,
    NetworkError,
    PackagingError,
    PublishError,
)
from intuneappbuilder.io.graph import GraphClient
from intuneappbuilder.logging import get_logger, set_global_logger


def _report_error(err: Exception, args: argparse.Namespace) -> int:
    print(f"Error: {err}")
    if args.verbose or args.debug:
        import traceback

        traceback.print_exc()
    return 1


def cmd_pack(args: argparse.Namespace) -> int:
    """Handler for 'iab pack' command.

    Encrypts each source and writes {base}.intunewin.json, {base}.intunewin
    and {base}.portal.intunewin into the output directory.

    Args:
        args: Parsed command-line arguments containing sources, output
            directory, optional setup file, and debug flags.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    # Configure global logger
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)

    output_dir = Path(args.output).resolve()
    results = []

    try:
        for source in args.source:
            source_path = Path(source).resolve()
            print(f"Packing: {source_path}")
            results.append(
                pack_source(source_path, output_dir, setup_file=args.setup_file)
            )
            print()
    except (ConfigError, PackagingError) as err:
        return _report_error(err, args)
    except IABError as err:
        # Catch any other errors we might have missed
        return _report_error(err, args)

    # Display results
    print("=" * 70)
    print("PACK RESULTS")
    print("=" * 70)
    for result in results:
        print(f"App:             {result.display_name} ({result.app_type})")
        print(f"Source:          {result.source}")
        print(f"Metadata:        {result.metadata_path}")
        print(f"Package:         {result.package_path}")
        print(f"Portal Package:  {result.portal_path}")
        print(f"Size:            {result.size} bytes ({result.size_encrypted} encrypted)")
        print(f"Status:          {result.status}")
        print("-" * 70)
    print()
    print(f"[SUCCESS] {len(results)} package(s) created successfully!")

    return 0


def cmd_publish(args: argparse.Namespace) -> int:
    """Handler for 'iab publish' command.

    Loads each packed package (a .intunewin.json file, or every one found
    under a directory) and publishes it to Intune.

    Args:
        args: Parsed command-line arguments containing sources, settings
            file, optional token, and debug flags.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    # Configure global logger
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)

    results = []
    try:
        settings = load_settings(Path(args.config) if args.config else None)

        metadata_files: list[Path] = []
        for source in args.source:
            found = find_package_files(Path(source).resolve())
            if not found:
                raise ConfigError(f"No .intunewin.json files found in {source}")
            metadata_files.extend(found)

        token = args.token or CredentialManager().get_token
        graph = GraphClient(
            token,
            base_url=settings.graph.base_url,
            timeout=settings.graph.timeout,
            create_retries=settings.content_file.create_retries,
            create_retry_delay=settings.content_file.create_retry_delay,
        )

        for metadata_path in metadata_files:
            print(f"Publishing: {metadata_path}")
            with read_package(metadata_path) as package:
                results.append(publish_package(package, graph, settings=settings))
            print()
    except (ConfigError, PackagingError, NetworkError, PublishError) as err:
        return _report_error(err, args)
    except IABError as err:
        # Catch any other errors we might have missed
        return _report_error(err, args)

    # Display results
    print("=" * 70)
    print("PUBLISH RESULTS")
    print("=" * 70)
    for result in results:
        created = " (created)" if result.created_app else ""
        print(f"App:             {result.display_name}{created}")
        print(f"App ID:          {result.app_id}")
        print(f"Content Version: {result.content_version_id}")
        print(f"Content File:    {result.file_id}")
        print(f"Blocks:          {result.block_count}")
        print(f"Status:          {result.status}")
        print("-" * 70)
    print()
    print(f"[SUCCESS] {len(results)} package(s) published successfully!")

    return 0


def _add_output_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show progress and high-level status updates",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Show detailed debugging output (implies --verbose)",
    )


def _tool_version() -> str:
    try:
        return version("intuneappbuilder")
    except PackageNotFoundError:
        from intuneappbuilder import __version__

        return __version__


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the iab CLI.

    This function is registered as the 'iab' console script in pyproject.toml.
    """
    parser = argparse.ArgumentParser(
        prog="iab",
        description="intuneappbuilder - build and publish Intune .intunewin packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"iab {_tool_version()}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=True,
    )

    # 'pack' command
    parser_pack = subparsers.add_parser(
        "pack",
        help="Create .intunewin packages from files or directories",
        description="Encrypt setup files or app directories into .intunewin packages.",
    )
    parser_pack.add_argument(
        "-s",
        "--source",
        action="append",
        required=True,
        help="Setup file or app directory to pack (repeatable)",
    )
    parser_pack.add_argument(
        "-o",
        "--output",
        default=".",
        help="Directory for the package files (default: current directory)",
    )
    parser_pack.add_argument(
        "--setup-file",
        default=None,
        help="Setup file inside a directory source (default: its first .msi, else first .exe)",
    )
    _add_output_flags(parser_pack)
    parser_pack.set_defaults(func=cmd_pack)

    # 'publish' command
    parser_publish = subparsers.add_parser(
        "publish",
        help="Upload packed packages to Intune",
        description="Publish .intunewin.json packages (or directories of them) to Intune.",
    )
    parser_publish.add_argument(
        "-s",
        "--source",
        action="append",
        required=True,
        help="Package .intunewin.json file or directory to search (repeatable)",
    )
    parser_publish.add_argument(
        "--config",
        default=None,
        help="YAML settings file overriding the built-in defaults",
    )
    parser_publish.add_argument(
        "--token",
        default=None,
        help="Graph access token (default: INTUNE_* environment variables)",
    )
    _add_output_flags(parser_publish)
    parser_publish.set_defaults(func=cmd_publish)

    # Parse and dispatch
    args = parser.parse_args(argv)

    # Call the appropriate command handler
    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
