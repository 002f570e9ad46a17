"""
CLI Commands for the Ethereum connector.

Provides command-line interface using Click framework.

Author: Ethereum Connector Team
License: MIT
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from loguru import logger

from ..blockchain.ledger_client import create_ledger_client, method_signature
from ..blockchain.mock_ledger import MockLedgerClient
from ..blockchain.registry_contract import RegistryContractGateway
from ..client.agent import ClientAgent, LedgerWallet
from ..config import ConnectorConfig, ContractConfig, load_config
from ..exceptions import ConnectorError
from ..identity.challenge_authority import ChallengeAuthority
from ..identity.store import InMemoryIdentityStore
from ..monitoring.logging_config import configure_logging
from ..orchestrator import VerificationOrchestrator


def _load(ctx) -> ConnectorConfig:
    try:
        return load_config(ctx.obj.get("config"))
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)


# Main CLI group
@click.group()
@click.version_option(version="1.0.0")
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """
    Ethereum User Connector.

    Bind user identities to Ethereum addresses they control.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose

    configure_logging(log_level="DEBUG" if verbose else "INFO")


# Serve command
@cli.command()
@click.option("--host", help="Override API host")
@click.option("--port", type=int, help="Override API port")
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int]):
    """Run the verification HTTP API."""
    from ..api_server import main

    config = _load(ctx)
    if host:
        config.api.host = host
    if port:
        config.api.port = port

    main(config)


# Status command
@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def status(ctx, as_json: bool):
    """Show node status for the default server."""
    config = _load(ctx)

    async def collect():
        server = config.default_server()
        async with create_ledger_client(config) as ledger:
            check = await ledger.validate_connection(server.network_id)
            node = await ledger.node_status()
        return server, check, node

    try:
        server, check, node = asyncio.run(collect())
    except ConnectorError as e:
        logger.error(f"Status check failed: {e.message}")
        sys.exit(1)

    report = {
        "server": {"id": server.id, "label": server.label, "url": server.url},
        "network": config.network_options().get(server.network_id, str(server.network_id)),
        "connection": {"error": check.error, "message": check.message},
        "node": node.as_dict(),
    }

    if as_json:
        click.echo(json.dumps(report, indent=2))
    else:
        click.echo(f"Server:  {server.label} ({server.url})")
        click.echo(f"Network: {report['network']}")
        for key, value in node.as_dict().items():
            click.echo(f"  {key}: {value}")

    if check.error:
        logger.error(check.message)
        sys.exit(1)
    logger.success(check.message)


# Contract check command
@cli.command(name="check-contract")
@click.option("--address", help="Contract address (defaults to the configured one)")
@click.pass_context
def check_contract(ctx, address: Optional[str]):
    """Verify the registry contract is deployed."""
    config = _load(ctx)
    contract = config.contract
    if address:
        contract = ContractConfig(address=address, deployment_block=contract.deployment_block)

    async def check() -> bool:
        async with create_ledger_client(config) as ledger:
            return await RegistryContractGateway(ledger, contract).validate_deployment()

    try:
        valid = asyncio.run(check())
    except ConnectorError as e:
        logger.error(f"Contract check failed: {e.message}")
        sys.exit(1)

    if not valid:
        logger.error(f"Can not verify contract at given address: {contract.address}")
        sys.exit(1)
    logger.success(f"Contract verified at {contract.address}")


# Signature command
@cli.command()
@click.argument("function_signature")
def signature(function_signature: str):
    """Print the 4-byte selector, e.g. for 'validateUserByHash(bytes32)'."""
    click.echo(method_signature(function_signature))


# Verify command
@cli.command()
@click.argument("identity_id")
@click.option("--account", help="Sending account (mock mode registers it)")
@click.option("--ready-timeout", type=float, default=60.0, help="Seconds to wait for the wallet")
@click.pass_context
def verify(ctx, identity_id: str, account: Optional[str], ready_timeout: float):
    """Bind IDENTITY_ID to an account managed by the node."""
    config = _load(ctx)

    async def run():
        server = config.default_server()
        ledger = create_ledger_client(config)
        if account and isinstance(ledger, MockLedgerClient):
            ledger.add_account(account)

        store = InMemoryIdentityStore()
        store.add(identity_id)
        authority = ChallengeAuthority(store, ttl_seconds=config.challenge.ttl_seconds)

        async with ledger:
            gateway = RegistryContractGateway(ledger, config.contract)
            agent = ClientAgent(
                LedgerWallet(ledger),
                VerificationOrchestrator(authority, gateway, config.orchestrator),
                gateway,
                network_id=server.network_id,
                ready_timeout=ready_timeout,
            )
            return await agent.run(identity_id)

    try:
        flow = asyncio.run(run())
    except ConnectorError as e:
        logger.error(f"Verification failed: {e.message}")
        sys.exit(1)

    click.echo(f"State: {flow.state.value}")
    if flow.attempt and flow.attempt.tx_hash:
        click.echo(f"Transaction: {flow.attempt.tx_hash}")
    if flow.result:
        click.echo(flow.result.message)

    if flow.result is None or not flow.result.success:
        sys.exit(1)


# Config command
@cli.command()
@click.option("--init", "init_path", type=click.Path(), help="Write the default config to a file")
@click.option("--show", is_flag=True, help="Show current config")
@click.pass_context
def config(ctx, init_path: Optional[str], show: bool):
    """Manage configuration files."""
    if init_path:
        ConnectorConfig().to_yaml(Path(init_path))
        logger.success(f"Config created: {init_path}")

    elif show:
        current = _load(ctx)
        click.echo(yaml.dump(current.model_dump(mode="json"), default_flow_style=False, sort_keys=False))

    else:
        click.echo("Use --init PATH or --show")


if __name__ == "__main__":
    cli()
