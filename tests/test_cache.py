"""
Stale-cache notification tests.
"""

import asyncio

from unittest.mock import patch

from governance.core.cache import StaleNotifier, PLANNING_DATA
from util.logging import logger


class TestStaleNotifier:

    def test_inline_delivery_without_loop(self):
        notifier = StaleNotifier()
        seen = []
        notifier.subscribe(PLANNING_DATA, "a", seen.append)
        assert notifier.notify(PLANNING_DATA) == 1
        assert seen == [PLANNING_DATA]

    def test_no_subscribers(self):
        assert StaleNotifier().notify("nobody") == 0

    def test_deferred_delivery_on_running_loop(self):
        notifier = StaleNotifier()
        seen = []
        notifier.subscribe(PLANNING_DATA, "a", seen.append)

        async def run():
            notifier.notify(PLANNING_DATA)
            # Not delivered until the publisher yields
            assert seen == []
            await asyncio.sleep(0)
            return list(seen)

        assert asyncio.run(run()) == [PLANNING_DATA]

    def test_failing_subscriber_is_logged_not_raised(self):
        notifier = StaleNotifier()
        seen = []

        def broken(topic):
            raise RuntimeError("cache backend down")

        notifier.subscribe(PLANNING_DATA, "broken", broken)
        notifier.subscribe(PLANNING_DATA, "ok", seen.append)

        with patch.object(logger, 'log_cache_invalidation') as log:
            notifier.notify(PLANNING_DATA)

        assert seen == [PLANNING_DATA]
        failed = [c for c in log.call_args_list if c.kwargs.get("status") == "failed"]
        assert len(failed) == 1
        assert failed[0].args[:2] == (PLANNING_DATA, "broken")
