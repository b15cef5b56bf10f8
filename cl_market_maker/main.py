from __future__ import annotations

import argparse
import asyncio
from typing import Optional, Sequence

from cl_market_maker import __version__
from cl_market_maker import status_api
from cl_market_maker.chain_client import ChainClient
from cl_market_maker.config import MarketMakerConfig, load_config
from cl_market_maker.controller import Controller
from cl_market_maker.derivative import DerivativeReader
from cl_market_maker.errors import ConfigError, SubscriptionError
from cl_market_maker.log import get_logger, log_event
from cl_market_maker.models import TradeTrigger
from cl_market_maker.submitter import DryRunSubmitter, KeyringSubmitter, SignerServiceSubmitter, Submitter
from cl_market_maker.ws_client import connect_and_listen

logger = get_logger("cl_market_maker", "CLMM")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Concentrated-liquidity market maker")
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to the market maker config file",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="store_true",
        help="Print the version of the program and exit",
    )
    return parser


def build_submitter(config: MarketMakerConfig) -> Submitter:
    if config.dry_run:
        return DryRunSubmitter()
    if not config.signer_url:
        return KeyringSubmitter(
            key_name=config.key_name,
            chain_id=config.chain_id,
            node=config.rpc_url,
            lcd_url=config.lcd_url,
            binary=config.chain_binary,
            keyring_backend=config.keyring_backend,
            keyring_dir=config.keyring_dir,
            memo=config.memo,
            fees=config.fees,
            gas=config.gas,
            gas_adjustment=config.gas_adjustment,
            timeout=config.submit_timeout_s,
        )
    return SignerServiceSubmitter(
        config.signer_url,
        memo=config.memo,
        fees=config.fees,
        gas=config.gas,
        gas_adjustment=config.gas_adjustment,
        timeout=config.submit_timeout_s,
    )


def build_controller(config: MarketMakerConfig) -> Controller:
    chain = ChainClient(config.lcd_url, timeout=config.query_timeout_s)
    reader = DerivativeReader(chain, config.power_contract_address)
    return Controller(config, chain, reader, build_submitter(config))


async def _run(config: MarketMakerConfig) -> None:
    controller = build_controller(config)
    triggers: asyncio.Queue[TradeTrigger] = asyncio.Queue()

    log_event(
        logger,
        "STARTING",
        version=__version__,
        pool=config.power_pool_id,
        signer=config.signer_address,
        dry_run=config.dry_run,
    )

    jobs = [
        connect_and_listen(config.websocket_url, config.subscription_query, triggers, config.ws_max_reconnects),
        controller.run(triggers),
    ]
    if config.status_port:
        jobs.append(status_api.serve(controller, config.status_host, config.status_port))

    await asyncio.gather(*jobs)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"Version: {__version__}")
        return 0

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error(f"Failed to load config: {exc}")
        return 1

    try:
        asyncio.run(_run(config))
    except SubscriptionError as exc:
        logger.error(f"Event subscription died: {exc}")
        return 1
    except KeyboardInterrupt:
        log_event(logger, "STOPPED")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
