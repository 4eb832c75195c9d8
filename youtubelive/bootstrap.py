#!/usr/bin/env python3
"""bootstrap logging"""

import logging
import logging.handlers
import pathlib
import sys
import time

LOG_FORMAT = ("%(asctime)s %(levelname)s %(process)d %(processName)s/%(threadName)s " +
              "%(module)s:%(funcName)s:%(lineno)d %(message)s")
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def setuplogging(logdir: pathlib.Path | str | None = None,
                 logname: str = "debug.log",
                 rotate: bool = False,
                 level: int = logging.DEBUG) -> pathlib.Path | None:
    """configure logging; stderr if no log directory is given"""
    if not logdir:
        logging.basicConfig(format=LOG_FORMAT,
                            datefmt=LOG_DATEFMT,
                            handlers=[logging.StreamHandler(sys.stderr)],
                            level=level,
                            force=True)
        logging.captureWarnings(True)
        return None

    logpath = pathlib.Path(logdir)
    if logpath.is_file():
        logname = logpath.name
        logpath = logpath.parent
    logpath.mkdir(parents=True, exist_ok=True)
    logfile = logpath.joinpath(logname)

    besuretorotate = bool(logfile.exists() and rotate)
    logfhandler = logging.handlers.RotatingFileHandler(filename=logfile,
                                                       backupCount=10,
                                                       encoding="utf-8")
    if besuretorotate:
        # previous instance may still hold the file on Windows
        for attempt in range(3):
            try:
                logfhandler.doRollover()
                break
            except OSError as error:
                if attempt < 2:
                    time.sleep(0.5 * (attempt + 1))
                    continue
                logging.warning("Could not rotate log file after 3 attempts: %s", error)

    logging.basicConfig(format=LOG_FORMAT,
                        datefmt=LOG_DATEFMT,
                        handlers=[logfhandler],
                        level=level,
                        force=True)
    logging.captureWarnings(True)
    return logfile
