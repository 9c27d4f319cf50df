#!/usr/bin/env python3
"""
Video Splitter for dmmirror
Cuts videos that exceed the destination's per-upload duration or size limits
into sequential parts that are queued for upload ahead of everything else.
"""
import json
import logging
import os
import subprocess

from . import path
from .errors import TransientError
from .source import Candidate, VideoMetadata

log = logging.getLogger('splitter')


def duration_split_count(duration, max_duration):
    """
    Number of parts a video must be cut into to respect the max upload duration

    Returns:
        0 when the video fits in one upload
    """
    if not max_duration or duration <= max_duration:
        return 0
    return duration // max_duration + 1


def size_tolerance(max_size):
    """Largest part size accepted, 1% under the destination limit"""
    return max_size // 100 * 99


def size_split_count(file_size, max_size, current_splits=0):
    """
    Smallest number of parts that brings each part under the size tolerance

    Args:
        file_size: Size in bytes of the downloaded video
        max_size: Destination max upload size in bytes, 0 for no limit
        current_splits: Parts already required by the duration limit

    Returns:
        current_splits when the size does not force more parts
    """
    if not max_size:
        return current_splits
    tolerance = size_tolerance(max_size)
    if file_size <= tolerance * max(current_splits, 1):
        return current_splits

    splits = max(current_splits, 2)
    while file_size > tolerance * splits:
        splits += 1
    log.warning(f"Video size ({file_size} bytes) is larger than the max allowed upload size ({max_size} bytes), "
                f"{splits} splits required")
    return splits


def segment_duration(duration, split_count):
    return duration // split_count + 1


class VideoSplitter:
    """Cuts videos with ffmpeg stream copy and measures the parts with ffprobe"""

    def __init__(self, ffmpeg_binary_path='ffmpeg', ffprobe_binary_path='ffprobe', timeout=3600):
        """
        Args:
            ffmpeg_binary_path: Path to ffmpeg binary
            ffprobe_binary_path: Path to ffprobe binary
            timeout: Timeout in seconds for cutting a single part
        """
        self.ffmpeg_binary_path = ffmpeg_binary_path
        self.ffprobe_binary_path = ffprobe_binary_path
        self.timeout = timeout

    def _run(self, cmd):
        log.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                text=True
            )
        except subprocess.TimeoutExpired:
            raise TransientError(f"{os.path.basename(cmd[0])} timed out after {self.timeout}s")
        except OSError as e:
            raise TransientError(f"Unable to run {cmd[0]}: {e}")

        if result.returncode != 0:
            raise TransientError(f"{os.path.basename(cmd[0])} exited with code {result.returncode}: "
                                 f"{result.stderr.strip()}")
        return result.stdout

    def probe_duration(self, video_path):
        """Duration of a media file in whole seconds"""
        output = self._run([
            self.ffprobe_binary_path,
            '-v', 'error',
            '-show_entries', 'format=duration',
            '-of', 'default=noprint_wrappers=1:nokey=1',
            video_path
        ])
        try:
            return int(round(float(output.strip())))
        except ValueError:
            raise TransientError(f"Unable to read duration of {video_path} from {output.strip()!r}")

    def cut(self, source_path, start, duration, output_path):
        self._run([
            self.ffmpeg_binary_path,
            '-hide_banner',
            '-loglevel', 'error',
            '-y',
            '-ss', str(start),
            '-i', source_path,
            '-t', str(duration),
            '-c', 'copy',
            '-map', '0',
            output_path
        ])

    def split(self, metadata, split_count):
        """
        Cut a downloaded video into split_count parts

        Each part gets its own info json carrying the measured duration, the
        part number and a "[ i of N ]" title. The original files are removed
        once at least one part was produced.

        Args:
            metadata: VideoMetadata of the downloaded video
            split_count: Number of parts to produce

        Returns:
            List of Candidate, in part order
        """
        length = segment_duration(metadata.duration, split_count)
        log.info(f"Splitting {metadata.source_id} into {split_count} parts of "
                 f"{length} seconds each")

        segments = []
        for part in range(1, split_count + 1):
            start = (part - 1) * length
            base = f"{metadata.file_stem}.part{part}"
            output_path = f"{base}.{metadata.ext}"
            try:
                self.cut(metadata.file_path, start, length, output_path)
                actual_duration = self.probe_duration(output_path)
            except TransientError as e:
                log.error(f"Failed to create part {part} of {split_count} for {metadata.source_id}: {e}")
                path.delete(output_path)
                continue

            info = dict(metadata.info)
            info.update({
                'duration': actual_duration,
                'fulltitle': f"[ {part} of {split_count} ] {metadata.title}",
                'split_part': part,
                'split_total': split_count,
            })
            info_path = f"{base}.info.json"
            with open(info_path, 'w') as f:
                json.dump(info, f)

            log.info(f"Created part {part} of {split_count}: {os.path.basename(output_path)} "
                     f"({actual_duration} seconds)")
            segments.append(Candidate.from_metadata(VideoMetadata(info, info_path)))

        if segments:
            path.delete([metadata.file_path, metadata.info_path])
        else:
            log.error(f"No parts could be created for {metadata.source_id}, keeping the original file")
        return segments
