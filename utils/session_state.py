"""
Run statistics for dmmirror
Tracks uploaded/skipped videos of the current run and keeps them in
session_state.json so the last run can be inspected after it exits.
"""

import json
import os
import time
import logging

from . import misc

log = logging.getLogger("session_state")


class RunStatistics:
    """Counts what a run uploaded and skipped"""

    def __init__(self, data_dir, clock=time.time):
        self.session_file = os.path.join(data_dir, 'session_state.json')
        self.clock = clock
        self.session_data = {}

    def start_session(self):
        """Mark run as started"""
        self.session_data = {
            'active': True,
            'session_start': time.strftime('%Y-%m-%d %H:%M:%S'),
            'session_start_time': self.clock(),
            'uploaded_videos': 0,
            'uploaded_duration': 0,
            'skipped_videos': 0,
            'skipped_duration': 0,
            'remaining_videos': 0,
        }
        self._save()

    def add_remaining(self, count):
        if not self.session_data.get('active'):
            return
        self.session_data['remaining_videos'] += count
        self._save()

    def record_upload(self, duration):
        if not self.session_data.get('active'):
            return
        self.session_data['uploaded_videos'] += 1
        self.session_data['uploaded_duration'] += duration
        self.session_data['remaining_videos'] = max(0, self.session_data['remaining_videos'] - 1)
        self._save()

    def record_skip(self, duration):
        if not self.session_data.get('active'):
            return
        self.session_data['skipped_videos'] += 1
        self.session_data['skipped_duration'] += duration or 0
        self._save()

    @property
    def uploaded(self):
        return self.session_data.get('uploaded_videos', 0)

    def end_session(self):
        """Mark run as ended"""
        if not self.session_data.get('active'):
            return

        self.session_data['active'] = False
        self.session_data['session_end'] = time.strftime('%Y-%m-%d %H:%M:%S')
        self.session_data['total_duration_seconds'] = int(self.clock() - self.session_data['session_start_time'])
        self._save()

    def summary(self):
        data = self.session_data
        return (f"Uploaded {data.get('uploaded_videos', 0)} video(s) "
                f"({misc.format_duration(data.get('uploaded_duration', 0))}), "
                f"skipped {data.get('skipped_videos', 0)} "
                f"({misc.format_duration(data.get('skipped_duration', 0))}), "
                f"{data.get('remaining_videos', 0)} left to mirror")

    def print_summary(self):
        log.info("---------------------- Run statistics ----------------------")
        log.info(f"Videos uploaded:     {self.session_data.get('uploaded_videos', 0)}")
        log.info(f"Duration uploaded:   {misc.format_duration(self.session_data.get('uploaded_duration', 0))}")
        log.info(f"Videos skipped:      {self.session_data.get('skipped_videos', 0)}")
        log.info(f"Duration skipped:    {misc.format_duration(self.session_data.get('skipped_duration', 0))}")
        log.info(f"Videos remaining:    {self.session_data.get('remaining_videos', 0)}")
        log.info(f"Run time:            {misc.seconds_to_string(self.session_data.get('total_duration_seconds', 0))}")

    def _save(self):
        """Save run state to file"""
        try:
            with open(self.session_file, 'w') as f:
                json.dump(self.session_data, f, indent=2)
        except OSError as e:
            log.warning(f"Failed to save session state: {e}")
