#!/usr/bin/env python3
"""
Command-line upload client.

Examples:
    chunked-upload city.kml --destination city-42
    chunked-upload city.kml --destination city-42 --compress whole --concurrency 4
    chunked-upload city.kml --destination city-42 --resume upload_1700000000000_k3j9x2m1q --chunk-size 5242880
"""
import argparse
import asyncio
import json
import signal
import sys
from typing import Optional

from tqdm import tqdm

from chunked_transfer.client.orchestrator import UploadProgress
from chunked_transfer.client.planner import CompressionMode
from chunked_transfer.client.transport import HttpChunkTransport
from chunked_transfer.client.uploader import ChunkedUploader
from chunked_transfer.config import settings
from chunked_transfer.core.exceptions import (
    TransferException,
    UploadAbortedException,
    UploadFailedException,
)


def build_parser() -> argparse.ArgumentParser:
    client = settings.get_client_config()
    parser = argparse.ArgumentParser(description="Upload a file in resumable chunks")
    parser.add_argument("file", help="File to upload")
    parser.add_argument("--destination", "-d", required=True, help="Destination identifier")
    parser.add_argument("--url", default=client.base_url, help=f"API base URL (default: {client.base_url})")
    parser.add_argument("--username", default=client.username, help="HTTP Basic username")
    parser.add_argument("--password", default=client.password, help="HTTP Basic password")
    parser.add_argument("--chunk-size", type=int, default=None,
                        help=f"Chunk size in bytes (default: {client.chunk_size})")
    parser.add_argument("--concurrency", type=int, default=client.concurrency, help="Parallel chunk uploads")
    parser.add_argument("--attempts", type=int, default=client.max_attempts, help="Attempts per chunk")
    parser.add_argument("--compress", choices=[mode.value for mode in CompressionMode],
                        default=CompressionMode.NONE.value, help="Gzip the payload before sending")
    parser.add_argument("--resume", metavar="SESSION_ID", default=None,
                        help="Finish an interrupted upload (requires the same --chunk-size and --compress)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    return parser


def resume_hint(args: argparse.Namespace, error: TransferException) -> str:
    """Command-line flags that continue an interrupted upload."""
    chunk_size = getattr(error, "chunk_size", None) or args.chunk_size
    hint = f"--resume {error.session_id} --chunk-size {chunk_size}"
    if args.compress != CompressionMode.NONE.value:
        hint += f" --compress {args.compress}"
    return hint


async def run_upload(args: argparse.Namespace) -> int:
    client = settings.get_client_config()
    client.concurrency = args.concurrency
    client.max_attempts = args.attempts

    bar: Optional[tqdm] = None

    def on_progress(progress: UploadProgress) -> None:
        nonlocal bar
        if bar is None:
            bar = tqdm(total=progress.total_chunks, unit="chunk", desc="Uploading")
        if progress.retrying:
            tqdm.write(f"Chunk {progress.chunk_index} failed (attempt {progress.attempt}), retrying")
            return
        bar.n = progress.completed_count
        bar.set_postfix(speed=f"{progress.speed_mbps:.2f} MB/s")
        bar.refresh()

    async with HttpChunkTransport(
        args.url,
        username=args.username,
        password=args.password,
        max_connections=max(args.concurrency, 1) * 2
    ) as transport:
        uploader = ChunkedUploader(transport, client)
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, uploader.abort)
        except (NotImplementedError, RuntimeError):
            pass

        try:
            if args.resume:
                if not args.chunk_size:
                    print("--resume requires --chunk-size", file=sys.stderr)
                    return 2
                summary = await uploader.resume(
                    args.file, args.resume, args.destination, args.chunk_size,
                    compression=CompressionMode(args.compress), progress_callback=on_progress
                )
            else:
                summary = await uploader.upload_file(
                    args.file, args.destination,
                    compression=CompressionMode(args.compress),
                    chunk_size=args.chunk_size,
                    progress_callback=on_progress
                )
        except UploadAbortedException as e:
            print(f"\nAborted: {e.message}", file=sys.stderr)
            print(f"Resume with: {resume_hint(args, e)}", file=sys.stderr)
            return 130
        except UploadFailedException as e:
            print(f"\nUpload failed: {e.message}", file=sys.stderr)
            print(f"Resume with: {resume_hint(args, e)}", file=sys.stderr)
            return 1
        except TransferException as e:
            print(f"\nError: {e.message}", file=sys.stderr)
            return 1
        finally:
            if bar is not None:
                bar.close()
            uploader.close()

    if args.json:
        print(json.dumps(summary.result, indent=2))
    else:
        print(
            f"Uploaded {summary.result.get('file_name')} "
            f"({summary.result.get('file_size')} bytes, {summary.total_chunks} chunks) "
            f"to {summary.result.get('destination_path')} in {summary.elapsed_time:.2f}s"
        )
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run_upload(args))


if __name__ == "__main__":
    sys.exit(main())
