import logging
import sys
from typing import Optional, Union

from config import settings


def setup_logging(level: Optional[Union[str, int]] = None) -> None:
    """Initialize the root logger once with a stdout handler.

    The level comes from the explicit argument, else ``LOG_LEVEL``, else INFO.
    """
    raw = level if level is not None else settings.log_level
    if isinstance(raw, int):
        desired_level = raw
    else:
        name = str(raw).strip().upper()
        if name.isdigit():
            desired_level = int(name)
        else:
            desired_level = logging.getLevelName(name)
            if not isinstance(desired_level, int):
                desired_level = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)
        logging.captureWarnings(True)
    root.setLevel(desired_level)
