# polling.py - HZREFRESH Poll-Until Primitive
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Waits on remote state that converges asynchronously

import time
import logging
from typing import Callable, Optional, TypeVar

from Tools.errors import PollTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')

POLL_INTERVAL = 30  # seconds between remote state checks


def poll_until(fetch: Callable[[], T], predicate: Callable[[T], bool],
               interval: float = POLL_INTERVAL,
               max_attempts: Optional[int] = None,
               max_seconds: Optional[float] = None,
               description: str = 'condition',
               write_output=None,
               sleep=time.sleep) -> T:
    """
    Call fetch() and test the result until predicate() accepts it.

    With no bound the wait is indefinite, which is how every wait in the
    refresh behaves unless max_poll_minutes is configured.

    :param fetch: Queries the remote state
    :param predicate: Returns True when the fetched state is the one wanted
    :param interval: Seconds to sleep between checks
    :param max_attempts: Optional cap on the number of fetches
    :param max_seconds: Optional cap on total elapsed time
    :param description: Text used in progress and timeout messages
    :param write_output: Optional progress function (rpf.write_output)
    :param sleep: Sleep function (replaced in tests)
    :return: The first fetched value satisfying predicate
    :raises PollTimeoutError: when a configured bound is exceeded
    """
    start = time.monotonic()
    attempt = 0

    while True:
        attempt += 1
        result = fetch()
        if predicate(result):
            logger.debug(f'{description} satisfied after {attempt} check(s)')
            return result

        if max_attempts is not None and attempt >= max_attempts:
            raise PollTimeoutError(f'Gave up waiting for {description} after {attempt} checks')
        if max_seconds is not None and (time.monotonic() - start) >= max_seconds:
            raise PollTimeoutError(
                f'Gave up waiting for {description} after {int(time.monotonic() - start)} seconds')

        if write_output:
            write_output(f'  [Check {attempt}] still waiting for {description}, next check in {interval}s')
        sleep(interval)
