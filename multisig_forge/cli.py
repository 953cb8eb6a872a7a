"""
multisig-forge command line.

Usage:
    multisig-forge generate config.json --out build/
    multisig-forge deploy config.json --key treasury
    multisig-forge status treasury
    multisig-forge balance 0x71c7656ec7ab88b098defb751b7401b5f6d8976f

`deploy` runs against the simulated chain and records every stage in the
SQL record store; running it again with a finished key reports the stored
deployment instead of deploying twice.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

import structlog
from rich.console import Console
from rich.table import Table

from multisig_forge.config import settings
from multisig_forge.configuration.parser import load_system_config, write_contract_system
from multisig_forge.configuration.schema import STAGE_ORDER, DeploymentRecord
from multisig_forge.deployment.orchestrator import DeploymentOrchestrator
from multisig_forge.deployment.rpc_client import JsonRpcClient
from multisig_forge.deployment.simulated import SimulatedChain
from multisig_forge.deployment.store import SqlRecordStore
from multisig_forge.errors import ConfigurationError, DeploymentStageError, ForgeError
from multisig_forge.generation.identifiers import WEI_PER_ETH, format_eth
from multisig_forge.generation.system import generate_contract_system

console = Console()


def configure_logging() -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=settings.log_level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


# ════════════════════════════════════════════════════════════════
# Commands
# ════════════════════════════════════════════════════════════════


def run_generate(config_path: str, out_dir: str) -> list[Path]:
    """Generate the contract system for a configuration file and write it out."""
    log = structlog.get_logger()
    log.info("multisig_forge.cli.generate.started", config=config_path)

    config = load_system_config(config_path)
    system = generate_contract_system(config)
    written = write_contract_system(system, out_dir)

    table = Table(title="Generated modules", show_lines=True)
    table.add_column("Contract", style="cyan")
    table.add_column("File", style="green")
    table.add_column("Lines", justify="right")
    table.add_column("Description", style="dim")
    for module, path in zip(system.modules, written):
        table.add_row(
            module.logical_name,
            str(path),
            str(module.source_text.count("\n")),
            module.description,
        )
    console.print(table)
    console.print(f"  Roles: [bold]{', '.join(system.metadata.custom_roles) or '—'}[/bold]")
    console.print(f"  Amount tiers: [bold]{', '.join(system.metadata.amount_rules) or '—'}[/bold]")

    log.info("multisig_forge.cli.generate.completed", files=len(written), out=out_dir)
    return written


def render_record(record: DeploymentRecord) -> Table:
    table = Table(title=f"Deployment '{record.key}'", show_lines=True)
    table.add_column("Stage", style="cyan")
    table.add_column("Status", width=10)
    table.add_column("Address", style="green")
    table.add_column("Transaction", style="dim")
    for stage in STAGE_ORDER[1:]:
        if record.pending is not None and record.pending.stage == stage:
            status = "[yellow]pending[/yellow]"
        elif stage.index <= record.stage.index:
            status = "[green]done[/green]"
        else:
            status = "—"
        table.add_row(
            stage.value,
            status,
            record.address_for(stage) or "—",
            record.transaction_hashes.get(stage, "—"),
        )
    return table


async def run_deploy(config_path: str, key: str, database_url: str) -> DeploymentRecord:
    """Deploy (or resume deploying) a configuration on the simulated chain."""
    log = structlog.get_logger()
    config = load_system_config(config_path)
    if config.multisig is None:
        raise ConfigurationError("Configuration has no 'multisig' section with owners and threshold")

    system = generate_contract_system(config)
    store = SqlRecordStore(database_url)
    store.initialize()
    chain = SimulatedChain()
    orchestrator = DeploymentOrchestrator(chain, chain, store)

    log.info("multisig_forge.cli.deploy.started", key=key, owners=len(config.multisig.owners))
    record = await orchestrator.deploy_system(
        key, system, config.multisig.owners, config.multisig.threshold
    )
    log.info(
        "multisig_forge.cli.deploy.finished",
        key=key,
        stage=record.stage.value,
        pending=record.is_pending,
    )
    console.print(render_record(record))
    return record


def run_status(key: str, database_url: str) -> DeploymentRecord | None:
    store = SqlRecordStore(database_url)
    store.initialize()
    record = store.load(key)
    if record is None:
        console.print(f"[yellow]No deployment recorded under '{key}'[/yellow]")
        return None
    console.print(render_record(record))
    if record.last_error:
        console.print(f"  Last error: [red]{record.last_error}[/red]")
    return record


async def run_balance(address: str, rpc_url: str) -> int:
    async with JsonRpcClient(rpc_url) as client:
        balance = await client.get_balance(address)
    console.print(f"  {address}: [bold]{format_eth(Decimal(balance) / WEI_PER_ETH)} ETH[/bold]")
    return balance


# ════════════════════════════════════════════════════════════════
# Entry Point
# ════════════════════════════════════════════════════════════════


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multisig-forge",
        description="Generate and deploy role-aware multisig contract systems",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    generate = sub.add_parser("generate", help="Generate Roles, Policy and manager contracts")
    generate.add_argument("config", help="Path to the JSON configuration")
    generate.add_argument("--out", default="build", help="Output directory (default: build)")

    deploy = sub.add_parser("deploy", help="Deploy a configuration on the simulated chain")
    deploy.add_argument("config", help="Path to the JSON configuration")
    deploy.add_argument("--key", required=True, help="Deployment key (resumes if it exists)")
    deploy.add_argument("--database-url", default=None, help="Record store URL (defaults to settings)")

    status = sub.add_parser("status", help="Show a recorded deployment")
    status.add_argument("key")
    status.add_argument("--database-url", default=None, help="Record store URL (defaults to settings)")

    balance = sub.add_parser("balance", help="Query an account balance over JSON-RPC")
    balance.add_argument("address")
    balance.add_argument("--rpc-url", default=None, help="RPC endpoint (defaults to settings)")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging()

    ok = True
    try:
        if args.command == "generate":
            run_generate(args.config, args.out)
        elif args.command == "deploy":
            record = asyncio.run(run_deploy(args.config, args.key, args.database_url or settings.database_url))
            ok = record.is_complete
        elif args.command == "status":
            ok = run_status(args.key, args.database_url or settings.database_url) is not None
        elif args.command == "balance":
            asyncio.run(run_balance(args.address, args.rpc_url or settings.rpc_url))
    except DeploymentStageError as exc:
        console.print(f"[bold red]✗ Stage {exc.stage.value} failed:[/bold red] {exc}")
        console.print(render_record(exc.record))
        ok = False
    except ForgeError as exc:
        console.print(f"[bold red]✗ {exc}[/bold red]")
        ok = False

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
