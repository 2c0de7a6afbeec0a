"""
Peer list helper.

Runs with elevated privileges (normally through pkexec) and rewrites the
Peers section of the daemon configuration:

    peerscout-update-peers [--verbose] [--config PATH ...] [--max-peers N] PEER_LIST_FILE
"""

import logging
import sys
from pathlib import Path
from typing import Tuple

import click

from ..config import DAEMON_CONFIG_PATHS, MAX_PEERS
from ..errors import ConfigRewriteError
from .rewrite import SUCCESS_MARKER, apply_peer_list, locate_config, read_peer_list


def setup_logging(verbose: bool = False):
    """Debug lines go to stderr so stdout only carries the result."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="Debug: %(message)s",
        stream=sys.stderr
    )


@click.command()
@click.option('-v', '--verbose', is_flag=True, help='Print each step to stderr')
@click.option('--config', 'config_paths', multiple=True, type=click.Path(dir_okay=False),
              help='Config file to update; repeat to list fallbacks (default: known paths)')
@click.option('--max-peers', default=MAX_PEERS, show_default=True, type=int,
              help='Maximum number of peers to write')
@click.argument('peer_list_file', type=click.Path(dir_okay=False))
def main(verbose: bool, config_paths: Tuple[str, ...], max_peers: int, peer_list_file: str):
    """Replace the Peers section of the Yggdrasil config with PEER_LIST_FILE."""
    setup_logging(verbose)
    
    try:
        if not Path(peer_list_file).is_file():
            raise ConfigRewriteError(f"Peer list file not found: {peer_list_file}")
        
        target = locate_config(config_paths or DAEMON_CONFIG_PATHS)
        
        peers = read_peer_list(peer_list_file, max_peers)
        if not peers:
            raise ConfigRewriteError("No valid peers found in input file")
        
        backup = apply_peer_list(target, peers)
    except ConfigRewriteError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    
    click.echo(f"Peers {SUCCESS_MARKER} in {target}")
    if backup is None:
        click.echo("Peers already in place, configuration left unchanged")
    else:
        click.echo(f"Backup of original configuration saved to {backup}")


if __name__ == "__main__":
    main()
