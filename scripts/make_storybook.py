#!/usr/bin/env python3
"""Analyze a story file, draw every scene and save the printable HTML.

Without arguments the bundled bedtime story in samples/ is used.
"""

import sys
import time
from pathlib import Path

import httpx

BASE_URL = "http://127.0.0.1:8000"
DEFAULT_STORY_PATH = Path(__file__).resolve().parent / "samples" / "three_little_pigs.txt"


def main():
    if len(sys.argv) > 1 and sys.argv[1] in ("-h", "--help"):
        print("usage: make_storybook.py [STORY_FILE] [OUTPUT_HTML]")
        return

    story_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_STORY_PATH
    story_text = story_path.read_text(encoding="utf-8")
    output = Path(sys.argv[2]) if len(sys.argv) > 2 else Path("storybook.html")
    client = httpx.Client(base_url=BASE_URL, timeout=120.0)

    resp = client.post("/v1/stories/analyze", json={"story_text": story_text})
    if resp.status_code != 200:
        print(f"Failed to analyze story: {resp.status_code} {resp.text}", file=sys.stderr)
        sys.exit(1)
    story = resp.json()
    story_id = story["story_id"]
    print(f"STORY_ID={story_id} TITLE={story['title']} SCENES={len(story['scenes'])}")

    resp = client.post(f"/v1/stories/{story_id}/generate")
    if resp.status_code != 202:
        print(f"Failed to start generation: {resp.status_code} {resp.text}", file=sys.stderr)
        sys.exit(1)
    job_id = resp.json()["job_id"]

    while True:
        job = client.get(f"/v1/jobs/{job_id}").json()
        progress = job.get("progress") or {}
        if progress:
            print(f"  ready={progress['ready']} failed={progress['failed']} total={progress['total']}")
        if job["status"] in ("succeeded", "failed"):
            break
        time.sleep(2)

    if job["status"] == "failed":
        print(f"Generation job failed: {job.get('error')}", file=sys.stderr)
        sys.exit(1)
    print(f"RESULT={job['result']}")

    resp = client.get(f"/v1/stories/{story_id}/print")
    output.write_text(resp.text, encoding="utf-8")
    print(f"Wrote {output}")


if __name__ == "__main__":
    main()
