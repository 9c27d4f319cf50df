#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import logging
import sys
import time
from logging.handlers import RotatingFileHandler

import schedule

from utils import config, decorators
from utils.cache import Cache
from utils.errors import FatalError
from utils.lock import Lock
from utils.mirror import Mirror
from utils.notifications import Notifications

############################################################
# INIT
############################################################

# Logging
log_formatter = logging.Formatter(u'%(asctime)s - %(levelname)-10s - %(name)-20s - %(funcName)-30s - %(message)s')
root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)

# Set schedule logger to ERROR
logging.getLogger('schedule').setLevel(logging.ERROR)
logging.getLogger("requests").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)
logging.getLogger("sqlitedict").setLevel(logging.WARNING)

# Set console logger
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(log_formatter)
root_logger.addHandler(console_handler)

# Init config
conf = config.Config()

# Set file logger
file_handler = RotatingFileHandler(
    conf.settings['logfile'],
    maxBytes=1024 * 1024 * 5,
    backupCount=5,
    encoding='utf-8'
)
file_handler.setFormatter(log_formatter)
root_logger.addHandler(file_handler)

# Set chosen logging level
root_logger.setLevel(conf.settings['loglevel'])
log = root_logger.getChild('dmmirror')

# Load config from disk
conf.load()

# Init Cache class
cache = Cache(conf.settings['cachefile'])

# Init Notifications class
notify = Notifications()


############################################################
# MISC FUNCS
############################################################

def init_notifications():
    for notification_name, notification_config in conf.configs['notifications'].items():
        if not notify.load(**notification_config):
            log.warning(f"Notification agent {notification_name!r} was not loaded")


def instance_lock():
    if conf.args['multi_instance']:
        return None
    lock_file = Lock(conf.settings['lockfile'])
    if lock_file.is_locked():
        log.info(f"Another instance is running with pid {lock_file.owner()}, exiting")
        return False
    return lock_file


############################################################
# DOER FUNCS
############################################################

@decorators.timed
def do_mirror():
    lock_file = instance_lock()
    if lock_file is False:
        return

    mirror = Mirror.from_config(conf, cache, notify)
    if lock_file is None:
        mirror.run(single_video=conf.args['single_video'], requested_count=conf.args['count'])
        return
    with lock_file:
        mirror.run(single_video=conf.args['single_video'], requested_count=conf.args['count'])


def scheduled_mirror():
    try:
        do_mirror()
    except FatalError as e:
        log.error(f"Mirror run stopped: {e}")
        notify.send(message=f"Mirror run stopped: {e}")
    except Exception:
        log.exception("Unexpected exception occurred while mirroring: ")


############################################################
# MAIN
############################################################

if __name__ == "__main__":
    # run chosen mode
    try:

        if conf.args['cmd'] == 'mirror':
            log.info("Started in mirror mode")
            init_notifications()
            do_mirror()
        elif conf.args['cmd'] == 'run':
            log.info("Started in run mode")
            init_notifications()

            interval = float(conf.configs['schedule']['interval_hours'])
            schedule.every(interval).hours.do(scheduled_mirror)
            log.info(f"Added mirror to schedule, mirroring every {interval} hours")
            scheduled_mirror()

            # run schedule
            while True:
                try:
                    schedule.run_pending()
                except Exception:
                    log.exception("Unhandled exception occurred while processing scheduled tasks: ")
                time.sleep(1)
        elif conf.args['cmd'] == 'show_uploads':
            mirror = Mirror.from_config(conf, cache)
            mirror.login()
            mirror.show_uploads()
        elif conf.args['cmd'] == 'sync_uploads':
            mirror = Mirror.from_config(conf, cache)
            mirror.login()
            mirror.sync_uploads()
        elif conf.args['cmd'] == 'mark_done':
            Mirror.from_config(conf, cache).mark_done(conf.args['mark_done'])
        elif conf.args['cmd'] == 'sync_video':
            if not conf.args['sync_id']:
                log.error("sync_video requires --sync-id")
                sys.exit(1)
            Mirror.from_config(conf, cache).sync_video(conf.args['sync_id'])
        elif conf.args['cmd'] == 'time_offset':
            offset = Mirror.from_config(conf, cache).time_offset()
            log.info(f"Dailymotion clock offset is {offset} second(s)")
        elif conf.args['cmd'] == 'update_config':
            exit(0)
        else:
            log.error(f"Unknown command: {conf.args['cmd']!r}")

    except KeyboardInterrupt:
        log.info("dmmirror was interrupted by Ctrl + C")
    except FatalError as e:
        log.error(f"Fatal error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception:
        log.exception("Unexpected fatal exception occurred: ")
        sys.exit(1)
    finally:
        cache.close()
