"""
peerscout CLI - discover, test and adopt public mesh peers.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from .config import Config, get_config, set_config
from .errors import PeerScoutError
from .export import latency_cell, validity_cell
from .manager import PeerManager
from .models import PeerCandidate
from .uri import is_peer_uri

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()]
    )


def run_async(coro):
    """Run an async function."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        return loop.run_until_complete(coro)


def _fail(message: str):
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(1)


def _discover(manager: PeerManager, unique: bool, quiet: bool = False) -> List[PeerCandidate]:
    async def fetch():
        try:
            return await manager.discover(unique=unique)
        finally:
            await manager.source.close()
    
    try:
        if quiet:
            return run_async(fetch())
        with console.status(f"Fetching peers from {manager.source.url}..."):
            return run_async(fetch())
    except PeerScoutError as e:
        _fail(e.message)


def _run_tests(manager: PeerManager, peers: List[PeerCandidate], show_progress: bool = True) -> bool:
    """Test peers with a progress bar. Returns False if interrupted."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
        disable=not show_progress
    ) as progress:
        task = progress.add_task("Testing peers...", total=len(peers))
        
        def on_result(result, ratio):
            progress.update(task, completed=manager.aggregator.completed_count)
        
        manager.start_tests(peers, on_result=on_result)
        try:
            while not manager.wait_for_tests(0.2):
                pass
        except KeyboardInterrupt:
            progress.update(task, description="Stopping...")
            manager.cancel_tests()
            manager.wait_for_tests()
            return False
        finally:
            progress.update(task, completed=manager.aggregator.completed_count)
    return True


def _peer_table(peers: List[PeerCandidate], title: Optional[str] = None) -> Table:
    table = Table(title=title)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Peer")
    table.add_column("Latency (ms)", justify="right")
    table.add_column("Valid")
    
    for i, peer in enumerate(peers, 1):
        validity = validity_cell(peer)
        style = "green" if peer.valid else ("red" if peer.tested else "dim")
        table.add_row(str(i), peer.uri, latency_cell(peer), validity, style=style)
    return table


def _ranked(peers: List[PeerCandidate]) -> List[PeerCandidate]:
    return sorted(peers, key=lambda p: (not p.valid, not p.tested, p.latency_ms if p.valid else 0))


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(file_okay=False), help='Data directory')
@click.pass_context
def main(ctx, verbose, data_dir):
    """🌐 peerscout - find fast public peers for your mesh daemon"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)
    if data_dir:
        set_config(Config.load(Path(data_dir)))
    if verbose:
        get_config().debug = True


@main.command()
@click.option('--url', help='Peer directory URL')
@click.option('--unique', is_flag=True, help='Drop repeated URIs')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON')
def discover(url: Optional[str], unique: bool, as_json: bool):
    """List peers published by the peer directory."""
    config = get_config()
    if url:
        config.discovery.url = url
    
    manager = PeerManager(config)
    try:
        peers = _discover(manager, unique, quiet=as_json)
    finally:
        manager.scheduler.shutdown()
    
    if as_json:
        click.echo(json.dumps([p.to_dict() for p in peers], indent=2))
        return
    
    if not peers:
        console.print("[yellow]The directory lists no peers.[/yellow]")
        return
    
    console.print(_peer_table(peers, title=f"{len(peers)} peers"))


@main.command()
@click.argument('uris', nargs=-1)
@click.option('--url', help='Peer directory URL')
@click.option('--unique', is_flag=True, help='Drop repeated URIs')
@click.option('--limit', '-n', type=int, help='Only test the first N peers')
@click.option('--workers', '-w', type=int, help='Concurrent pings')
@click.option('--csv', 'csv_path', type=click.Path(dir_okay=False), help='Also write a CSV report')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON')
def test(uris: Tuple[str, ...], url: Optional[str], unique: bool, limit: Optional[int],
         workers: Optional[int], csv_path: Optional[str], as_json: bool):
    """Ping peers and rank them by latency.
    
    Tests the given URIS, or every peer in the directory.
    Press Ctrl+C to stop; peers not yet tested stay untested.
    """
    config = get_config()
    if url:
        config.discovery.url = url
    if workers:
        config.probe.max_workers = workers
    
    manager = PeerManager(config)
    try:
        if uris:
            manager.set_candidates(_parse_uris(uris), unique=unique)
        else:
            _discover(manager, unique, quiet=as_json)
        
        peers = manager.candidates[:limit] if limit else manager.candidates
        if not peers:
            console.print("[yellow]No peers to test.[/yellow]")
            return
        
        finished = _run_tests(manager, peers, show_progress=not as_json)
    finally:
        manager.scheduler.shutdown()
    
    if as_json:
        click.echo(json.dumps([p.to_dict() for p in _ranked(manager.candidates)], indent=2))
    else:
        console.print(_peer_table(_ranked(peers)))
        valid = sum(1 for p in peers if p.valid)
        state = "Testing complete" if finished else "Testing stopped"
        console.print(f"\n[bold]{state}:[/bold] {valid}/{len(peers)} peers reachable\n")
    
    if csv_path:
        try:
            count = manager.export_csv(csv_path)
        except PeerScoutError as e:
            _fail(e.message)
        console.print(f"[green]✓ Exported {count} peers to {csv_path}[/green]")


@main.command()
@click.argument('uris', nargs=-1)
@click.option('--top', '-n', default=None, type=int, help='Number of peers to apply (default: max peers)')
@click.option('--no-test', is_flag=True, help='Apply without testing first')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation')
def apply(uris: Tuple[str, ...], top: Optional[int], no_test: bool, yes: bool):
    """Write the best peers into the daemon configuration.
    
    Uses the given URIS, or every peer in the directory. Peers are
    tested first and the fastest reachable ones are applied.
    """
    config = get_config()
    top = top or config.merge.max_peers
    
    manager = PeerManager(config)
    try:
        if uris:
            manager.set_candidates(_parse_uris(uris), unique=True)
        else:
            _discover(manager, unique=True)
        
        if not manager.candidates:
            _fail("No peers selected")
        
        if not no_test:
            if not _run_tests(manager, manager.candidates):
                console.print("[yellow]Testing stopped, nothing applied.[/yellow]")
                return
    finally:
        manager.scheduler.shutdown()
    
    selected = manager.best(top) or manager.candidates[:top]
    if not manager.valid_peers and not no_test:
        console.print("[yellow]⚠️  No peer answered; applying untested peers.[/yellow]")
    
    console.print(_peer_table(selected, title="Peers to apply"))
    if not yes and not click.confirm("\nUpdate the daemon configuration?"):
        return
    
    try:
        result = manager.apply(selected)
    except PeerScoutError as e:
        _fail(e.message)
    
    console.print(f"\n[bold green]✓ Configuration updated successfully[/bold green] ({result.peers_written} peers)")
    if result.output:
        console.print(f"[dim]{result.output}[/dim]")
    console.print("[dim]Restart the daemon to use the new peers.[/dim]\n")


@main.command()
@click.argument('path', type=click.Path(dir_okay=False))
@click.option('--test/--no-test', 'run_tests', default=False, help='Ping peers before exporting')
@click.option('--unique', is_flag=True, help='Drop repeated URIs')
def export(path: str, run_tests: bool, unique: bool):
    """Export the directory's peers to a CSV file."""
    manager = PeerManager(get_config())
    try:
        _discover(manager, unique)
        if run_tests and manager.candidates:
            _run_tests(manager, manager.candidates)
    finally:
        manager.scheduler.shutdown()
    
    if not manager.candidates:
        console.print("[yellow]No peer data to export.[/yellow]")
        return
    
    try:
        count = manager.export_csv(path)
    except PeerScoutError as e:
        _fail(e.message)
    console.print(f"[green]✓ Peer data successfully exported to {path}[/green] ({count} peers)")


def _parse_uris(uris: Tuple[str, ...]) -> List[PeerCandidate]:
    bad = [u for u in uris if not is_peer_uri(u)]
    if bad:
        _fail(f"Not a peer URI: {', '.join(bad)}")
    return [PeerCandidate(uri=u.strip()) for u in uris]


def _coerce_setting(current, raw: str):
    """Parse VALUE for a setting, keeping the setting's type."""
    # text settings (and the unset proxy) take VALUE verbatim
    if current is None or isinstance(current, str):
        return None if raw == "null" else raw
    
    expected = type(current)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError(f"expected {expected.__name__}, got {raw!r}")
    
    if expected is float and type(parsed) is int:
        parsed = float(parsed)
    if type(parsed) is not expected:
        raise ValueError(f"expected {expected.__name__}, got {raw!r}")
    if expected is list and not all(isinstance(item, str) for item in parsed):
        raise ValueError("expected a list of strings")
    if expected in (int, float) and parsed <= 0:
        raise ValueError("must be positive")
    return parsed


@main.group('config')
def config_group():
    """Show or change settings."""
    pass


@config_group.command('show')
def config_show():
    """Print the current configuration."""
    config = get_config()
    console.print(f"[dim]{config.config_path}[/dim]")
    click.echo(json.dumps(config.to_dict(), indent=2))


@config_group.command('set')
@click.argument('key')
@click.argument('value')
def config_set(key: str, value: str):
    """Set KEY (e.g. probe.max_workers) to VALUE and save."""
    config = get_config()
    section_name, _, field_name = key.partition('.')
    section = getattr(config, section_name) if section_name in ('discovery', 'probe', 'merge') else None
    
    if not field_name or section is None or not hasattr(section, field_name):
        _fail(f"Unknown setting: {key}")
    
    try:
        parsed = _coerce_setting(getattr(section, field_name), value)
    except ValueError as e:
        _fail(f"Invalid value for {key}: {e}")
    
    setattr(section, field_name, parsed)
    config.save()
    console.print(f"[green]✓ {key} = {parsed!r}[/green]")


if __name__ == '__main__':
    main()
