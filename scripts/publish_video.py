#!/usr/bin/env python3
"""
Publish a video stored in R2 to a Facebook Page from the command line.

Streams the object from the bucket to Facebook's resumable upload
endpoint in chunks, printing progress as the endpoint acknowledges bytes.

Usage:
    python scripts/publish_video.py videos/launch.mp4 1234567890 --title "Launch day"

Requires:
    - .env file with R2 credentials (or R2_MOCK_MODE=true)
    - A Page access token via --token or FB_ACCESS_TOKEN
"""

import os
import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from reelpush.config.settings import get_settings
from reelpush.core.upload import SessionSnapshot, UploadError, UploadOrchestrator
from reelpush.infrastructure.facebook.client import create_video_endpoint
from reelpush.infrastructure.storage.client import create_storage_client


def print_progress(snapshot: SessionSnapshot) -> None:
    print(
        f"  {snapshot.state.value:<12} {snapshot.current_offset:>12}/{snapshot.total_size} "
        f"bytes ({snapshot.progress:.0%}), {snapshot.transfer_calls} transfers"
    )


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Publish a stored video to a Facebook Page')
    parser.add_argument('object_key', help='Key of the video in the bucket')
    parser.add_argument('target_id', help='Facebook Page id')
    parser.add_argument('--title', required=True, help='Video title')
    parser.add_argument('--description', default='', help='Video description')
    parser.add_argument('--token', default=None, help='Page access token (default: $FB_ACCESS_TOKEN)')
    args = parser.parse_args()

    token = args.token or os.environ.get('FB_ACCESS_TOKEN', '')
    if not token:
        print("ERROR: No access token. Pass --token or set FB_ACCESS_TOKEN")
        sys.exit(1)

    settings = get_settings()
    storage = create_storage_client(
        config=settings.storage_config(),
        mock_mode=settings.r2_mock_mode,
    )
    endpoint = create_video_endpoint(
        config=settings.graph_config(),
        mock_mode=settings.fb_mock_mode,
    )
    orchestrator = UploadOrchestrator(
        source=storage,
        endpoint=endpoint,
        config=settings.upload_config(),
    )

    print(f"Publishing {args.object_key} to {args.target_id}")

    try:
        result = orchestrator.upload_sync(
            object_key=args.object_key,
            target_id=args.target_id,
            auth_token=token,
            display_name=args.title,
            description=args.description,
            progress_callback=print_progress,
        )
    except UploadError as e:
        print(f"ERROR: {e.phase} failed: {e}")
        if e.session_id:
            print(f"  session {e.session_id}, last acknowledged offset {e.last_offset}")
        if e.payload:
            print(f"  remote error: {e.payload}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("Cancelled")
        sys.exit(130)

    print(f"\n=== Upload Complete ===")
    print(f"Video id: {result.remote_object_id or '(not returned)'}")
    print(f"Bytes: {result.total_size} in {result.transfer_calls} transfers")

    sys.exit(0)


if __name__ == '__main__':
    main()
