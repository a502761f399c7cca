import sys

import uvicorn
from dotenv import load_dotenv
from loguru import logger

from assistant_gateway.api.app import create_app
from assistant_gateway.app_config import apply_runtime_env, load_json_config, parse_app_config, resolve_runtime_env
from assistant_gateway.bootstrap import bootstrap_runtime
from assistant_gateway.logging_config import setup_logging


def main() -> None:
    load_dotenv()

    app_config = parse_app_config(load_json_config())
    env = resolve_runtime_env(app_config.provider_name)
    apply_runtime_env(app_config, env)

    log_descriptions = setup_logging(level=app_config.log_level, consumers=app_config.log_consumers)

    if not env.provider_api_key:
        logger.error(f"{env.provider_env_var} environment variable is required.")
        sys.exit(1)

    runtime = bootstrap_runtime(app_config, env)
    app = create_app(runtime)

    logger.info(f"Provider: {app_config.provider_name}, default model: {app_config.default_model}")
    if runtime.lifecycle.base_directory:
        logger.info(f"Working directory: {runtime.lifecycle.base_directory}")
    logger.info(f"Telegram: {'enabled' if app_config.telegram.enabled else 'disabled'}")
    if log_descriptions:
        logger.info(f"Logging: {', '.join(log_descriptions)}")

    # log_config=None keeps uvicorn from replacing the intercept handlers.
    uvicorn.run(app, host=app_config.host, port=app_config.port, log_config=None)


if __name__ == "__main__":
    main()
