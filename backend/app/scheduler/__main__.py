"""Scheduler エントリポイント: python -m app.scheduler で起動"""
import signal
import sys
from functools import partial
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.scheduler.expiry_sweep import expiry_sweep_job
from app.services.container import build_store

setup_logging(debug=settings.DEBUG)
logger = get_logger("scheduler")

scheduler = BlockingScheduler(timezone=settings.TIMEZONE)


def signal_handler(sig, frame):
    logger.info("Scheduler停止シグナル受信")
    scheduler.shutdown(wait=False)
    sys.exit(0)


signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)


def main():
    logger.info("Scheduler起動")
    store = build_store(settings)

    # 毎時 5分: 期限切れクーポンの補正
    scheduler.add_job(
        partial(expiry_sweep_job, store),
        CronTrigger(minute=5, timezone=settings.TIMEZONE),
        id="expiry_sweep",
        max_instances=1,
    )

    # 00:00: 日付が変わった直後にも補正
    scheduler.add_job(
        partial(expiry_sweep_job, store),
        CronTrigger(hour=0, minute=0, timezone=settings.TIMEZONE),
        id="expiry_sweep_daily",
        max_instances=1,
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler終了")


if __name__ == "__main__":
    main()
