import asyncio
import sys
from argparse import ArgumentParser

from dotenv import load_dotenv

from quorum.aggregator.core.errors import CheckpointError
from quorum.aggregator.entry import run_aggregator
from quorum.aggregator.registry import OperatorRegistry
from quorum.aggregator.utils.config import AggregatorSettings
from quorum.utils.custom_logger import get_logger, set_log_level

logger = get_logger(__name__)


def main():
    """Main entry point for the aggregator."""
    parser = ArgumentParser(description="Quorum task aggregator")
    parser.add_argument("--config", type=str, help="YAML file listing registered operators")
    parser.add_argument("--checkpoint", type=str, help="Override CHECKPOINT_PATH")
    parser.add_argument("--log-level", type=str, help="Override LOG_LEVEL")
    args = parser.parse_args()

    load_dotenv()
    settings = AggregatorSettings()
    if args.checkpoint:
        settings.CHECKPOINT_PATH = args.checkpoint
    set_log_level(args.log_level or settings.LOG_LEVEL)

    operators_file = args.config or settings.OPERATORS_FILE
    registry = OperatorRegistry.from_yaml(operators_file) if operators_file else OperatorRegistry()

    try:
        asyncio.run(run_aggregator(settings, registry))
    except CheckpointError as e:
        logger.critical(f"Aggregator exiting on checkpoint failure: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
