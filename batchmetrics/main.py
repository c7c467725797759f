"""Main entry point: run configured workloads against the batching core."""
import argparse
import logging
import sys
import threading
import signal
import time

from batchmetrics.cardinality import generate_label_space
from batchmetrics.config import load_config
from batchmetrics.control_api import ControlAPI
from batchmetrics.engine import CollectionEngine, create_exporters, create_meter_provider, get_meter
from batchmetrics.instruments import SynchronousInstrument
from batchmetrics.stress import StressTestRunner, build_workload_operations


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        fmt = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def run_workloads(config, meter, engine) -> int:
    """Drive every configured workload; returns the number of collections."""
    logger = logging.getLogger(__name__)
    collections = 0
    for workload in config.workloads:
        instrument = meter.from_config(config.instrument(workload.instrument))
        if not isinstance(instrument, SynchronousInstrument):
            logger.warning(f"Skipping workload for asynchronous instrument '{instrument.name}'")
            continue

        label_sets = generate_label_space(config.profiles[workload.profile])
        logger.info(
            f"Workload '{workload.instrument}': {workload.writers} writers x "
            f"{workload.updates_per_writer} updates over {len(label_sets)} series "
            f"({'bound' if workload.bound else 'direct'})"
        )
        runner = StressTestRunner(
            instrument,
            build_workload_operations(workload, instrument, label_sets, config.global_.seed),
            collection_interval_ms=config.global_.collection_interval_s * 1000,
            collect=engine.tick,
        )
        collections += runner.run()
    return collections


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="batchmetrics - concurrent metric batching and collection"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--duration-s",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)"
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the control API"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("batchmetrics")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Collection interval: {config.global_.collection_interval_s}s")
    logger.info(f"Instruments configured: {len(config.instruments)}")
    logger.info(f"Workloads configured: {len(config.workloads)}")

    try:
        provider = create_meter_provider(config)
        engine = CollectionEngine(config, provider, create_exporters(config))
    except Exception as e:
        logger.error(f"Failed to initialize engine: {e}", exc_info=True)
        sys.exit(1)

    workload_thread = threading.Thread(
        target=run_workloads,
        args=(config, get_meter(provider), engine),
        daemon=True
    )
    workload_thread.start()
    engine.start()
    logger.info("Collection engine started")

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        engine.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if args.no_api:
        if args.duration_s is not None:
            time.sleep(args.duration_s)
        else:
            workload_thread.join()
        engine.stop()
        return

    if args.duration_s is not None:
        threading.Timer(args.duration_s, signal.raise_signal, args=(signal.SIGTERM,)).start()

    control_api = ControlAPI(engine)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        engine.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
