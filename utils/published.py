"""
Published record for dmmirror
Append-only JSON lines log of every video mirrored, with a CSV copy for
spreadsheets. Used to link split parts and to re-sync published videos.
"""
import csv
import json
import logging
import os
import time

log = logging.getLogger("published")

CSV_HEADER = ['Mirror_Time', 'YouTube_ID', 'Dailymotion_ID', 'Duration', 'Part_No', 'Title']


class PublishedRecord:
    def __init__(self, json_path, csv_path=None, clock=time.time):
        self.json_path = json_path
        self.csv_path = csv_path
        self.clock = clock

    def append(self, source_id, remote_id, duration, part, title):
        record = {
            'mirrorTime': int(self.clock()),
            'sourceId': source_id,
            'remoteId': remote_id,
            'duration': int(duration),
            'part': int(part or 0),
            'title': title,
        }
        with open(self.json_path, 'a') as f:
            f.write(json.dumps(record) + '\n')

        if self.csv_path:
            new_file = not os.path.exists(self.csv_path)
            with open(self.csv_path, 'a', newline='') as f:
                writer = csv.writer(f)
                if new_file:
                    writer.writerow(CSV_HEADER)
                writer.writerow([record['mirrorTime'], source_id, remote_id, record['duration'],
                                 record['part'] or '', title])

        log.info(f"Recorded {source_id} as published to {remote_id}")
        return record

    def records(self):
        if not os.path.exists(self.json_path):
            return
        with open(self.json_path, 'r') as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except ValueError:
                    log.warning(f"Skipping malformed published record on line {line_number}")

    def find_by_remote_id(self, remote_id):
        for record in self.records():
            if record.get('remoteId') == remote_id:
                return record
        return None

    def find_part(self, source_id, part):
        """Latest record of a part of a split video"""
        found = None
        for record in self.records():
            if record.get('sourceId') == source_id and int(record.get('part') or 0) == part:
                found = record
        return found

    def source_ids(self):
        return {record['sourceId'] for record in self.records() if record.get('sourceId')}
