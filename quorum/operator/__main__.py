from argparse import ArgumentParser

import uvicorn
from dotenv import load_dotenv

from quorum.operator.config import OperatorSettings
from quorum.operator.executor import TaskExecutor
from quorum.operator.server import create_app
from quorum.shared.signing import load_keypair
from quorum.utils.custom_logger import get_logger, set_log_level

logger = get_logger(__name__)


def main():
    """Main entry point for an operator node."""
    parser = ArgumentParser(description="Quorum operator node")
    parser.add_argument("--host", type=str, help="Override OPERATOR_HOST")
    parser.add_argument("--port", type=int, help="Override OPERATOR_PORT")
    args = parser.parse_args()

    load_dotenv()
    settings = OperatorSettings()
    set_log_level(settings.LOG_LEVEL)

    executor = TaskExecutor(load_keypair(settings.SIGNER_URI))
    logger.info(
        f"Operator {executor.identity} serving tasks; register it with endpoint {settings.PUBLIC_ENDPOINT}"
    )
    uvicorn.run(create_app(executor), host=args.host or settings.HOST, port=args.port or settings.PORT)


if __name__ == "__main__":
    main()
