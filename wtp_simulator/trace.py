#!/usr/bin/env python3
"""
Record Mode - snapshot the simulator state over HTTP for later review
"""

import sys
import json
import time
import logging
import requests
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

SIMULATOR_URL = 'http://localhost:8080'
RECORD_DURATION = 1800  # 30 minutes


class TraceRecorder:
    """Polls /api/state and /api/alarms and keeps the responses in order"""

    def __init__(self, base_url=SIMULATOR_URL, session=None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.trace = []

    def capture(self):
        state = self.session.get(f"{self.base_url}/api/state").json()
        alarms = self.session.get(f"{self.base_url}/api/alarms").json()
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'operation': 'snapshot',
            'sim_time': state.get('timestamp'),
            'data': state,
            'alarms': alarms,
        }
        self.trace.append(entry)
        return entry

    def record(self, duration=RECORD_DURATION, interval=1.0, sleep=time.sleep):
        start = time.time()
        try:
            while time.time() - start < duration:
                self.capture()
                if len(self.trace) % 60 == 0:
                    logger.info(f"Recorded {len(self.trace)} entries...")
                sleep(interval)
        except KeyboardInterrupt:
            logger.info("Recording stopped by user")
        return self.trace

    def save(self, output_file):
        with open(output_file, 'w') as f:
            json.dump(self.trace, f, indent=2)
        logger.info(f"Saved {len(self.trace)} entries to {output_file}")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    output_file = argv[0] if argv else 'trace.json'
    duration = float(argv[1]) if len(argv) > 1 else RECORD_DURATION

    recorder = TraceRecorder()
    print(f"Recording trace to {output_file} for {duration:.0f} seconds (Ctrl+C to stop early)")
    try:
        recorder.record(duration)
    except requests.RequestException as e:
        logger.error(f"Simulator unreachable: {e}")
    recorder.save(output_file)
    return 0


if __name__ == '__main__':
    sys.exit(main())
