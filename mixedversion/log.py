import logging
import logging.config
import sys

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "loggers": {
        "mixedversion": {"level": "INFO"},
    },
}

logging.config.dictConfig(LOGGING)

log = logging.getLogger("mixedversion")

handler = logging.StreamHandler(sys.stderr)
handler.setLevel(logging.DEBUG)
# same as log_cli_format in pyproject.toml
formatter = logging.Formatter(
    "%(asctime)s.%(msecs)03d %(levelname)s [%(filename)s:%(lineno)d] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
handler.setFormatter(formatter)
log.addHandler(handler)


def set_verbose(verbose: bool) -> None:
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
