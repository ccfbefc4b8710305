"""
Gunicorn hooks for the eligibility lookup service.

post_fork: each worker process starts its own upstream health monitor.
Threads started in the master do not survive the fork.

when_ready: opt-in boot check.  With SMOKE_TEST_ON_BOOT=1 the master runs
smoke_test.run_tests against the freshly bound server (SMOKE_BASE_URL, or
localhost on PORT) and logs PASSED/FAILED.  Off by default.
"""

import logging
import os
import threading
import time

logger = logging.getLogger("gunicorn.error")

BOOT_SMOKE_DELAY_SECONDS = 2


def boot_smoke_url(env=None):
    """Base URL to smoke-test after boot, or None when the check is off."""
    env = os.environ if env is None else env
    if env.get("SMOKE_TEST_ON_BOOT", "").strip().lower() not in ("1", "true", "yes"):
        return None
    explicit = env.get("SMOKE_BASE_URL", "").strip()
    if explicit:
        return explicit.rstrip("/")
    return f"http://127.0.0.1:{env.get('PORT', '8000')}"


def run_boot_smoke(base_url, delay=BOOT_SMOKE_DELAY_SECONDS):
    """Run the smoke suite against *base_url*; True when every check passed."""
    time.sleep(delay)  # workers are still forking when when_ready fires
    from smoke_test import run_tests
    logger.info("Boot smoke test starting against %s", base_url)
    try:
        ok = run_tests(base_url)
    except Exception:
        logger.exception("Boot smoke test crashed")
        return False
    if ok:
        logger.info("Boot smoke test PASSED")
    else:
        logger.error("Boot smoke test FAILED against %s", base_url)
    return ok


def when_ready(server):
    base_url = boot_smoke_url()
    if base_url is None:
        return None
    t = threading.Thread(target=run_boot_smoke, args=(base_url,), daemon=True, name="boot-smoke")
    t.start()
    return t


def post_fork(server, worker):
    """Start the upstream health monitor in this gunicorn worker process."""
    try:
        from eligibility_config import load_service_config
        from health_monitor import start_monitor
        start_monitor(load_service_config().overlay_url)
    except Exception as e:
        logger.exception("Failed to start health monitor in worker %s: %s", getattr(worker, "pid", "?"), e)
