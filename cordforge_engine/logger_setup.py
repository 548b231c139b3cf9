import logging
import coloredlogs
from pathlib import Path

RUNNER_LOG_FILENAME = "runner.log"

def setup_global_logger():
    logger = logging.getLogger("cordforge")
    logger.setLevel(logging.DEBUG)

    # coloredlogs installs its own console handler on 'logger'; the level
    # argument is the threshold for that handler only.
    coloredlogs.install(level='DEBUG', logger=logger, fmt='%(asctime)s %(name)s %(levelname)s %(message)s')
    return logger

def get_build_logger(build_id: str, log_dir: Path):
    """Creates a file logger holding the runner's own transcript for one build."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file_path = log_dir / RUNNER_LOG_FILENAME

    logger = logging.getLogger(f"cordforge.build.{build_id}")
    logger.setLevel(logging.DEBUG)
    # Console output already comes from the global logger
    logger.propagate = False

    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            logger.removeHandler(handler)

    fh = logging.FileHandler(log_file_path)
    fh.setLevel(logging.DEBUG)
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    return logger, str(log_file_path)

def close_build_logger(build_logger: logging.Logger):
    for handler in list(build_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            build_logger.removeHandler(handler)

# Initialize global logger
logger = setup_global_logger()
