from tqdm import tqdm
from concurrent.futures import as_completed
import logging
import sys

log = logging.getLogger(__name__)


class ProgressMiddleware:
    """
    Progress bar pinned at the bottom of stderr, advanced as analysis futures finish.
    Pair with TqdmLoggingHandler so log lines print above the bar.
    """

    def __init__(self, total=None, desc="Analyzing", unit="domain", disable=False):
        self.total = total
        self.desc = desc
        self.unit = unit
        self.disable = disable
        self._bar = None
        self._stderr = sys.stderr

    def start(self):
        if self.disable or self._bar is not None:
            return
        self._bar = tqdm(
            total=self.total,
            desc=self.desc,
            unit=self.unit,
            leave=False,
            dynamic_ncols=True,
            file=self._stderr,
            mininterval=0.1,
        )

    def wrap_futures(self, futures):
        """Yield futures as they complete, advancing the bar."""
        if self._bar is None:
            self.start()
        bar = self._bar
        for f in as_completed(futures):
            yield f
            if bar is not None:
                bar.update(1)
                log.debug("%s: processed %d/%d", self.desc, bar.n, bar.total)

    def close(self):
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.close()


class TqdmLoggingHandler(logging.Handler):
    """Route log records through tqdm.write so they do not break the bar."""

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=sys.stderr)
        except Exception:
            self.handleError(record)
