#!/usr/bin/env python3
"""
Transaction Blaster CLI
=======================

Commands:
- init:  write a default configuration file
- plan:  show how the total would be split across the configured wallets
- check: verify the node and print every wallet's pending nonce
- run:   send the transactions and print the run summary

Usage:
    python blaster_cli.py init
    python blaster_cli.py plan --total 10
    python blaster_cli.py check
    python blaster_cli.py run --total 500 --output results/run.json

Private keys are read from PRIVATE_KEYS (comma-separated), in the
environment or in the .env file.
"""

import sys
import asyncio
import argparse
from pathlib import Path
from typing import List, Optional, Tuple

from rich.panel import Panel
from rich.table import Table
from rich import box

from blaster import BlastOrchestrator, RunSummary, Web3NodeClient, compute_quotas, print_summary
from config import BlastConfig, ConfigManager
from logging_utils import get_event_logger
from utils import console, logger, setup_logging, format_address, BlasterError, ConfigurationError, NodeError
from wallet import BlastWallet, load_wallets


def print_banner():
    """Print the CLI banner."""
    banner = """
    Transaction Blaster
    ═══════════════════
    Multi-wallet transaction load generator
    """
    console.print(Panel(banner, style="bold cyan", box=box.DOUBLE))


def load_config(args, require_keys: bool = True) -> BlastConfig:
    """Layered config: YAML file, environment, then command-line flags."""
    overrides = {
        'rpc_url': args.rpc,
        'chain_id': args.chain_id,
        'total_tx': getattr(args, 'total', None),
        'log_level': args.log_level,
        'log_file': args.log_file,
        'dry_run': True if args.dry_run else None,
    }
    manager = ConfigManager(Path(args.config), env_file=args.env_file)
    config = manager.load(overrides=overrides, require_keys=require_keys)
    setup_logging(config.log_level, config.log_file)
    return config


def build_wallets(config: BlastConfig):
    wallets, key_errors = load_wallets(config.private_keys)
    console.print(f"[dim]Found {len(config.private_keys)} private keys, "
                  f"created {len(wallets)} wallets[/dim]")
    return wallets, key_errors


def init_command(args) -> int:
    """Handle init command - write the default config file."""
    path = ConfigManager(Path(args.config), env_file=None).write_default(force=args.force)
    console.print(f"[green]✓ Wrote {path}[/green]")
    console.print("[dim]Set PRIVATE_KEYS in your environment or .env before running.[/dim]")
    return 0


def plan_command(args) -> int:
    """Handle plan command - show the quota split without touching the network."""
    config = load_config(args)
    wallets, _ = build_wallets(config)
    quotas = compute_quotas(config.total_tx, len(wallets))

    table = Table(title=f"Distribution of {config.total_tx} transactions", box=box.ROUNDED)
    table.add_column("Wallet", style="cyan", justify="right")
    table.add_column("Address", style="dim")
    table.add_column("Quota", style="green", justify="right")

    for wallet, quota in zip(wallets, quotas):
        table.add_row(str(wallet.wallet_id), format_address(wallet.address),
                      str(quota) if quota else "[dim]0 (skipped)[/dim]")

    console.print(table)
    console.print("[dim]Wallets whose nonce cannot be fetched at run time are left out "
                  "and the split is recomputed.[/dim]")
    return 0


async def _check(config: BlastConfig, wallets: List[BlastWallet]) -> Tuple[Table, List[str]]:
    node = Web3NodeClient(config.rpc_url, config.request_timeout)
    try:
        chain_id = await node.get_chain_id()
        nonces = await asyncio.gather(
            *(node.fetch_pending_nonce(w.address) for w in wallets),
            return_exceptions=True
        )
    finally:
        await node.close()

    marker = "[green]✓[/green]" if chain_id == config.chain_id else f"[red]✗ expected {config.chain_id}[/red]"
    table = Table(title=f"{config.rpc_url} (chain {chain_id}) {marker}", box=box.ROUNDED)
    table.add_column("Wallet", style="cyan", justify="right")
    table.add_column("Address", style="dim")
    table.add_column("Pending nonce", justify="right")

    for wallet, nonce in zip(wallets, nonces):
        shown = f"[red]{nonce}[/red]" if isinstance(nonce, BaseException) else str(nonce)
        table.add_row(str(wallet.wallet_id), wallet.address, shown)

    problems = []
    if chain_id != config.chain_id:
        problems.append(f"node reports chain {chain_id}, config expects {config.chain_id}")
    if wallets and all(isinstance(n, BaseException) for n in nonces):
        problems.append("no wallet nonce could be fetched")
    return table, problems


def check_command(args) -> int:
    """Handle check command - node connectivity and nonces.

    Exits 1 when the node is on another chain or no nonce can be fetched.
    """
    config = load_config(args)
    wallets, _ = build_wallets(config)
    table, problems = asyncio.run(_check(config, wallets))
    console.print(table)
    for problem in problems:
        console.print(f"[red]✗ {problem}[/red]")
    return 1 if problems else 0


async def _blast(config: BlastConfig, wallets, key_errors, events) -> RunSummary:
    node = Web3NodeClient(config.rpc_url, config.request_timeout, dry_run=config.dry_run)
    try:
        return await BlastOrchestrator(config, node, wallets, key_errors, events=events).run()
    finally:
        await node.close()


def run_command(args) -> int:
    """Handle run command - blast transactions and report."""
    print_banner()

    config = load_config(args)
    wallets, key_errors = build_wallets(config)
    events = get_event_logger(config.event_log)

    if config.dry_run:
        console.print("[yellow][DRY RUN MODE] Transactions are signed but not broadcast[/yellow]\n")

    summary = asyncio.run(_blast(config, wallets, key_errors, events))
    print_summary(summary, console=console, events=events)

    if args.output:
        summary.save(args.output)
        console.print(f"[dim]Summary saved to {args.output}[/dim]")
    if args.metrics:
        events.save_metrics(args.metrics)
        console.print(f"[dim]Metrics saved to {args.metrics}[/dim]")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Multi-wallet transaction blaster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write a config template
  python blaster_cli.py init

  # Preview the split of 10 transactions
  python blaster_cli.py plan --total 10

  # Sign everything but broadcast nothing
  python blaster_cli.py --dry-run run --total 20

  # Full run with a JSON summary
  python blaster_cli.py run --output results/run.json
        """
    )

    # Global options
    parser.add_argument('--config', default='./blaster_config.yaml', help='Path to YAML config')
    parser.add_argument('--env-file', default='.env', help='Environment file holding PRIVATE_KEYS')
    parser.add_argument('--rpc', help='RPC URL override')
    parser.add_argument('--chain-id', type=int, help='Chain id override')
    parser.add_argument('--log-level', help='Console log level (DEBUG, INFO, ...)')
    parser.add_argument('--log-file', help='Plain-text log file')
    parser.add_argument('--dry-run', action='store_true', help='Sign transactions without broadcasting them')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    init_parser = subparsers.add_parser('init', help='Write a default config file')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')

    plan_parser = subparsers.add_parser('plan', help='Show the per-wallet distribution')
    plan_parser.add_argument('--total', type=int, help='Total transactions to send')

    subparsers.add_parser('check', help='Check node connectivity and wallet nonces')

    run_parser = subparsers.add_parser('run', help='Send the transactions')
    run_parser.add_argument('--total', type=int, help='Total transactions to send')
    run_parser.add_argument('--output', help='Write the run summary as JSON')
    run_parser.add_argument('--metrics', help='Write RPC timing metrics as JSON')

    return parser


COMMANDS = {
    'init': init_command,
    'plan': plan_command,
    'check': check_command,
    'run': run_command,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 0

    setup_logging(args.log_level or "INFO", None)

    try:
        return command(args)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1
    except NodeError as e:
        console.print(f"[red]Node error: {e}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped by user[/yellow]")
        return 130
    except BlasterError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    except Exception as e:
        logger.exception(f"Unhandled error: {e}")
        console.print(f"[red]Unhandled error: {type(e).__name__}: {e}[/red]")
        return 1


if __name__ == '__main__':
    sys.exit(main())
