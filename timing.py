import logging
import time

logger = logging.getLogger(__name__)


class Timer:
    """Logs how long each processing stage takes, at debug level"""

    def __init__(self, log: logging.Logger = logger):
        self.log = log
        self.start_time = None

    def start(self):
        self.start_time = time.perf_counter()

    def stop(self, stage_name: str) -> float:
        """Log and return the elapsed milliseconds since the last start()"""
        if self.start_time is None:
            raise RuntimeError("Timer.stop() called before start()")
        elapsed_ms = (time.perf_counter() - self.start_time) * 1000.0
        self.start_time = None
        self.log.debug(f"{stage_name} = {elapsed_ms:.6f} ms")
        return elapsed_ms
