"""CLI entry point for process-scout."""

from pathlib import Path

import click


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    default="config.yaml",
    show_default=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="Path to the config file",
)
@click.option("--dump-config", is_flag=True, help="Print the effective configuration and exit")
@click.version_option(package_name="process-scout")
def main(config_path: Path, dump_config: bool) -> None:
    """Export per-process CPU and memory usage for Prometheus."""
    import structlog

    from process_scout import logging as console
    from process_scout.classifier import ProcessType
    from process_scout.collector import ProcessCollector
    from process_scout.config import Config, ConfigError
    from process_scout.server import MetricsServer

    try:
        config = Config.load(config_path)
    except ConfigError as e:
        console.config_failed(str(e))
        raise SystemExit(1)

    if dump_config:
        click.echo(config.dump(), nl=False)
        return

    console.configure(config)
    log = structlog.get_logger()
    console.config_loaded(str(config_path), config.include_types, config.labels.names)
    known = {t.value for t in ProcessType}
    unknown = [t for t in config.include_types if t not in known]
    if unknown:
        console.unknown_types(unknown)

    host, port = config.listen
    collector = ProcessCollector(config)
    server = MetricsServer(collector, host, port)

    try:
        server.start()
    except OSError as e:
        log.error("bind_failed", address=config.listen_address, error=str(e))
        console.bind_failed(config.listen_address, str(e))
        raise SystemExit(1)

    console.exporter_started(server.url)
    server.install_signal_handlers()
    try:
        server.wait()
    finally:
        if server.stop_signal is not None:
            console.signal_received(server.stop_signal.name)
        console.exporter_stopping()
        server.stop()
        console.exporter_stopped()

    # Only a signal ends serving, which counts as abnormal termination
    raise SystemExit(1)


if __name__ == "__main__":
    main()
