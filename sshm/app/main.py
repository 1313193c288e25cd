"""Main application entry point."""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from sshm.core.path_state import PathState
from sshm.core.session import InteractiveSession
from sshm.core.terminal import TerminalManager
from sshm.engines.hop_connector import JumpChain
from sshm.services.host_store import HostStore, find_host
from sshm.shared.errors import ConfigError, HostNotFoundError, SSHMError
from sshm.shared.logging_ import setup_logger
from sshm.shared.models import HostConfig
from sshm.ui.host_browser import Selection
from sshm.ui.sftp_shell import SftpShell

SHOW_CURSOR = "\x1b[?25h"
RESET_ATTRIBUTES = "\x1b[0m"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshm",
        description="Pick a host and open an SSH shell or SFTP session, through jump hosts if configured.",
    )
    parser.add_argument("--config", type=Path, help="host configuration file (default: ~/.sshm.yaml and ~/.sshw.yaml)")
    parser.add_argument("--host", help="connect to this host without the picker (group/name for nested hosts)")
    parser.add_argument("--mode", choices=("ssh", "sftp"), default="ssh", help="session type for --host")
    parser.add_argument("--log-file", type=Path, help="write a debug log to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose logging on stderr")
    return parser


def run_ssh(chain: JumpChain, terminal: TerminalManager, logger: logging.Logger) -> None:
    session = InteractiveSession(chain, terminal, logger=logger)
    outcome = session.run()
    logger.info(f"Remote shell exited with status {outcome.exit_status}")
    print()


def run_sftp(chain: JumpChain, host: HostConfig, logger: logging.Logger) -> None:
    sftp = chain.open_sftp()
    try:
        paths = PathState.from_sftp(sftp)
        SftpShell(sftp, paths, host.user, host.host, logger=logger).run()
    finally:
        sftp.close()


def connect_and_run(selection: Selection, terminal: TerminalManager, logger: logging.Logger) -> None:
    """Open the host's chain and run the chosen session on it."""
    host = selection.host
    with JumpChain.for_host(host, logger=logger) as chain:
        if selection.mode == "sftp":
            run_sftp(chain, host, logger)
        else:
            run_ssh(chain, terminal, logger)


def _select(args, hosts: List[HostConfig]) -> Optional[Selection]:
    if args.host:
        host = find_host(hosts, args.host)
        if host is None or host.is_group:
            raise HostNotFoundError(args.host)
        return Selection(host, args.mode)

    from sshm.ui.host_picker import pick_host
    return pick_host(hosts)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the application."""
    args = build_parser().parse_args(argv)
    logger = setup_logger(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        log_file=args.log_file,
    )

    try:
        hosts = HostStore(args.config).load()
    except ConfigError as e:
        print(f"Error loading config: {e.message}", file=sys.stderr)
        print("Create ~/.sshm.yaml with your host configurations.", file=sys.stderr)
        return 1

    if not hosts:
        print("No hosts found in config", file=sys.stderr)
        return 1

    terminal = TerminalManager(logger=logger)
    try:
        try:
            selection = _select(args, hosts)
        except HostNotFoundError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        except Exception as e:
            print(f"TUI error: {e}", file=sys.stderr)
            return 1
        finally:
            sys.stdout.write(SHOW_CURSOR + RESET_ATTRIBUTES)
            sys.stdout.flush()

        if selection is None:
            return 0

        try:
            connect_and_run(selection, terminal, logger)
        except SSHMError as e:
            print(f"Connection error: {e.message}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            terminal.restore_quietly()
            print(file=sys.stderr)
            return 1
        except Exception as e:
            terminal.restore_quietly()
            logger.debug("Unexpected failure", exc_info=True)
            print(f"Unexpected error: {e}", file=sys.stderr)
            return 1
        return 0
    finally:
        terminal.cleanup()


if __name__ == "__main__":
    sys.exit(main())
