"""
Command-line entry point: `subchain-relay -r <rootchain rpc> -m <messenger>`.
"""
import logging
import signal
import threading
from typing import Optional

import typer
from pydantic import ValidationError

from .config import RelayConfig
from .exceptions import RelayError
from .relay import RelayCoordinator

app = typer.Typer(add_completion=False, help="Replay rootchain Messenger commands on a local subchain.")

logger = logging.getLogger("subchain_relay")


class ProgressReporter:
    """Adapts backfill progress callbacks to a typer progress bar"""

    def __init__(self, label: str = "Syncing"):
        self.label = label
        self._bar = None
        self._done = 0

    def __call__(self, done: int, total: int) -> None:
        if self._bar is None:
            self._bar = typer.progressbar(length=total, label=self.label)
            self._bar.__enter__()
        self._bar.update(done - self._done)
        self._done = done

    def close(self) -> None:
        if self._bar is not None:
            self._bar.__exit__(None, None, None)
            self._bar = None


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, frame):
        if stop_event.is_set():
            raise KeyboardInterrupt
        logger.info("Stopping relay (signal again to force)")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


@app.command()
def main(
    rootchain: str = typer.Option(..., "--rootchain", "-r", envvar="SUBCHAIN_ROOTCHAIN_URL",
                                  help="Rootchain RPC endpoint"),
    messenger: str = typer.Option(..., "--messenger", "-m", envvar="SUBCHAIN_MESSENGER_ADDRESS",
                                  help="The address of the Messenger contract on the rootchain"),
    db: str = typer.Option("db", "--db", "--db-path", envvar="SUBCHAIN_DB_PATH",
                           help="The database path"),
    port: int = typer.Option(8545, "--port", "-p", envvar="SUBCHAIN_PORT", help="Subchain RPC port"),
    registry_artifact: Optional[str] = typer.Option(
        None, "--registry-artifact", envvar="SUBCHAIN_REGISTRY_ARTIFACT",
        help="Compiled confirmation registry, used when the subchain is created"),
    anvil_bin: Optional[str] = typer.Option(None, "--anvil-bin", help="Path to the anvil binary"),
    log_level: str = typer.Option("INFO", "--log-level", envvar="SUBCHAIN_LOG_LEVEL"),
):
    """Sync the subchain with the rootchain and keep following it."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = RelayConfig.from_env(
            rootchain_url=rootchain,
            messenger_address=messenger,
            db_path=db,
            port=port,
            registry_artifact=registry_artifact,
            anvil_bin=anvil_bin,
        )
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2)

    stop_event = threading.Event()
    progress = ProgressReporter()
    relay = None
    try:
        relay = RelayCoordinator.from_config(config)
        typer.echo("subchain running")
        _install_signal_handlers(stop_event)
        relay.run(stop_event=stop_event, progress=progress)
    except RelayError as e:
        logger.error(f"Relay stopped: {e}")
        raise typer.Exit(code=1)
    finally:
        progress.close()
        if relay is not None:
            relay.close()


if __name__ == "__main__":
    app()
