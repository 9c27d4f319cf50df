import argparse
import copy
import json
import logging
import os
import sys

from .metadata import DEFAULT_DESCRIPTION_TEMPLATE

log = logging.getLogger('config')

base_dir = os.path.dirname(os.path.realpath(sys.argv[0]))


class Config(object):
    base_config = {
        'core': {
            'output_dir': os.path.join(base_dir, 'videos'),
            'ffmpeg_binary_path': 'ffmpeg',
            'ffprobe_binary_path': 'ffprobe',
            'split_timeout': 3600,
        },
        'source': {
            'urls': [],
            'playlist_reverse': True,
            'delay_download_if_longer_than': 3600,
            'delayed_videos_uploaded_within': 604800,
            'target_remaining_allowance': 30,
            'duration_search_timeout': 600,
        },
        'destination': {
            'api_url': 'https://api.dailymotion.com',
            'api_key': '',
            'api_secret': '',
            'refresh_token': '',
            'channel': 'news',
            'private': False,
            'password': '',
            'country': '',
            'next_video_id': '',
            'mirror_thumbnails': False,
            'appended_tags': [],
            'description_template': DEFAULT_DESCRIPTION_TEMPLATE,
        },
        'quota': {
            'duration_allowance': 7200,
            'allowance_period': 86400,
            'videos_per_day': 10,
            'videos_per_day_verified': 96,
            'videos_per_hour': 4,
            'hour_period': 3600,
            'min_spacing': 30,
            'expiry_tolerance': 30,
            'wait_before_download': 7200,
            'wait_before_upload': 1800,
            'quit_when_window_within': 10800,
            'publish_poll_interval': 30,
        },
        'schedule': {
            'interval_hours': 24,
        },
        'notifications': {},
    }

    base_settings = {
        'config': {
            'argv': '--config',
            'env': 'DMMIRROR_CONFIG',
            'default': os.path.join(base_dir, 'config.json')
        },
        'logfile': {
            'argv': '--logfile',
            'env': 'DMMIRROR_LOGFILE',
            'default': os.path.join(base_dir, 'dmmirror.log')
        },
        'cachefile': {
            'argv': '--cachefile',
            'env': 'DMMIRROR_CACHEFILE',
            'default': os.path.join(base_dir, 'cache.db')
        },
        'datadir': {
            'argv': '--datadir',
            'env': 'DMMIRROR_DATADIR',
            'default': base_dir
        },
        'loglevel': {
            'argv': '--loglevel',
            'env': 'DMMIRROR_LOGLEVEL',
            'default': 'INFO'
        },
    }

    def __init__(self, argv=None, environ=None):
        """Initializes config"""
        self.conf = None
        self.environ = environ if environ is not None else os.environ
        self.args = self.parse_args(argv)
        self.settings = self.get_settings(self.environ)

    @property
    def configs(self):
        return self.conf

    @property
    def default_config(self):
        return copy.deepcopy(self.base_config)

    def __inner_upgrade(self, settings1, settings2, key=None):
        sub_upgraded = False
        merged = copy.deepcopy(settings2)

        if isinstance(settings1, dict):
            for k, v in settings1.items():
                # missing k
                if k not in settings2:
                    merged[k] = v
                    sub_upgraded = True
                    if not key:
                        log.info(f"Added {str(k)!r} config option: {str(v)}")
                    else:
                        log.info(f"Added {str(k)!r} to config option {str(key)!r}: {str(v)}")
                    continue

                # iterate children
                if isinstance(v, dict) or isinstance(v, list):
                    merged[k], did_upgrade = self.__inner_upgrade(settings1[k], settings2[k], key=k)
                    sub_upgraded = did_upgrade if did_upgrade else sub_upgraded
        elif isinstance(settings1, list) and key:
            for v in settings1:
                if v not in settings2:
                    merged.append(v)
                    sub_upgraded = True
                    log.info(f"Added to config option {str(key)!r}: {str(v)}")
                    continue

        return merged, sub_upgraded

    def upgrade_settings(self, currents):
        fields_env = {}

        # ENV gets priority: ENV > config.json
        for name, data in self.base_config.items():
            env_name = f"DMMIRROR_{name.upper()}"
            if env_name in self.environ:
                # Use JSON decoder to get same behaviour as config file
                fields_env[name] = json.JSONDecoder().decode(self.environ[env_name])
                log.info(f"Using ENV setting {env_name}={fields_env[name]}")

        # Update in-memory config with environment settings
        currents.update(fields_env)

        # Do inner upgrade
        upgraded_settings, upgraded = self.__inner_upgrade(self.base_config, currents)
        return upgraded_settings, upgraded

    def load(self):
        if not os.path.exists(self.settings['config']):
            log.info(f"No config file found, creating default config at {self.settings['config']}")
            self.save(self.default_config)
            log.info("Please configure the source urls and Dailymotion api credentials, then start again")
            sys.exit(0)

        with open(self.settings['config'], 'r') as fp:
            self.conf, upgraded = self.upgrade_settings(json.load(fp))

        # Save config if upgraded
        if upgraded:
            self.save(self.conf)
            log.warning("New config options were added, adjust them as needed")

        self.validate()
        return self.conf

    def validate(self):
        destination = self.conf['destination']
        missing = [key for key in ('api_key', 'api_secret', 'refresh_token') if not destination.get(key)]
        if missing and self.args['cmd'] not in ('update_config', 'mark_done'):
            log.error(f"Missing destination settings: {', '.join(missing)}")
            sys.exit(1)
        if not self.conf['source'].get('urls') and self.args['cmd'] in ('mirror', 'run'):
            log.error("No source urls configured")
            sys.exit(1)

    def save(self, cfg):
        with open(self.settings['config'], 'w') as fp:
            json.dump(cfg, fp, indent=2, sort_keys=True)

    def get_settings(self, environ):
        setts = {}
        for name, data in self.base_settings.items():
            # Argrument priority: cmd < environment < default
            try:
                value = None
                # Command line argument
                if self.args[name]:
                    value = self.args[name]
                    log.info(f"Using ARG setting {name}={value}")

                # Envirnoment variable
                elif data['env'] in environ:
                    value = environ[data['env']]
                    log.info(f"Using ENV setting {data['env']}={value}")

                # Default
                else:
                    value = data['default']
                    log.info(f"Using default setting {data['argv']}={value}")

                setts[name] = value

            except Exception:
                log.exception(f"Exception raised on setting value: {name!r}")

        # derived paths for the ledger and record files
        datadir = setts['datadir']
        setts['allowance_file'] = os.path.join(datadir, 'allowance')
        setts['archive_file'] = os.path.join(datadir, 'downloaded')
        setts['published_json'] = os.path.join(datadir, 'published.json')
        setts['published_csv'] = os.path.join(datadir, 'published.csv')
        setts['lockfile'] = os.path.join(datadir, 'dmmirror.pid')
        return setts

    # Parse command line arguments
    def parse_args(self, argv=None):
        parser = argparse.ArgumentParser(
            description=(
                'Mirrors YouTube channels and playlists to Dailymotion, within the account\'s upload allowances.'
            ),
            formatter_class=argparse.RawTextHelpFormatter
        )

        # Mode
        parser.add_argument(
            'cmd',
            choices=('mirror', 'run', 'show_uploads', 'sync_uploads', 'mark_done', 'sync_video', 'time_offset',
                     'update_config'),
            help=(
                '"mirror": mirror new videos now and exit\n'
                '"run": mirror on a schedule\n'
                '"show_uploads": list uploads counting against the allowance\n'
                '"sync_uploads": rebuild the allowance ledger from the account\n'
                '"mark_done": mark videos as already mirrored\n'
                '"sync_video": re-publish a mirrored video with fresh metadata\n'
                '"time_offset": measure the destination clock offset\n'
                '"update_config": add new config options and exit'
            )
        )

        # Config file
        parser.add_argument(
            self.base_settings['config']['argv'],
            nargs='?',
            const=None,
            help=f"Config file location (default: {self.base_settings['config']['default']})"
        )

        # Log file
        parser.add_argument(
            self.base_settings['logfile']['argv'],
            nargs='?',
            const=None,
            help=f"Log file location (default: {self.base_settings['logfile']['default']})"
        )

        # Cache file
        parser.add_argument(
            self.base_settings['cachefile']['argv'],
            nargs='?',
            const=None,
            help=f"Cache file location (default: {self.base_settings['cachefile']['default']})"
        )

        # Data folder
        parser.add_argument(
            self.base_settings['datadir']['argv'],
            nargs='?',
            const=None,
            help=f"Folder for the allowance ledger and published records (default: "
                 f"{self.base_settings['datadir']['default']})"
        )

        # Logging level
        parser.add_argument(
            self.base_settings['loglevel']['argv'],
            choices=('WARN', 'INFO', 'DEBUG'),
            help='Log level (default: INFO)'
        )

        parser.add_argument(
            '--count',
            type=int,
            help='Stop after uploading this many videos'
        )

        parser.add_argument(
            '--single-video',
            metavar='YOUTUBE_ID',
            help='Mirror only this video'
        )

        parser.add_argument(
            '--ignore-allowance',
            action='store_true',
            help='Upload even when the allowance would not normally permit it'
        )

        parser.add_argument(
            '--multi-instance',
            action='store_true',
            help='Do not take the instance lock'
        )

        parser.add_argument(
            '--mark-done',
            metavar='ALL|SYNC|YOUTUBE_ID',
            default='SYNC',
            help=(
                'With mark_done, "ALL": every video at the source urls\n'
                '"SYNC": every video in the published record\n'
                'otherwise a single video id'
            )
        )

        parser.add_argument(
            '--sync-id',
            metavar='DAILYMOTION_ID',
            help='With sync_video, the Dailymotion video to re-publish'
        )

        # Print help by default if no arguments
        if argv is None and len(sys.argv) == 1:
            parser.print_help()
            sys.exit(0)

        return vars(parser.parse_args(argv))
