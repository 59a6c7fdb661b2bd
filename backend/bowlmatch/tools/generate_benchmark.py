"""
Generate a benchmark pattern document from a reference bowling video.

Runs the same sampling, pose detection and pattern finalization as a
normal analysis, then writes the pattern as versioned JSON:

    python -m bowlmatch.tools.generate_benchmark reference.mp4 -o benchmark_pattern.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from bowlmatch.config import Settings, get_settings
from bowlmatch.cv.analysis_session import AnalysisMode, AnalysisSession
from bowlmatch.cv.errors import AnalysisError
from bowlmatch.cv.frame_sampler import OpenCVVideoSource
from bowlmatch.cv.pattern_builder import MotionPattern
from bowlmatch.cv.pose_provider import PoseProvider, build_pose_provider

logger = logging.getLogger(__name__)


async def generate_benchmark(
    video_path: str,
    settings: Settings,
    pose_provider: Optional[PoseProvider] = None,
) -> MotionPattern:
    """Capture the finalized motion pattern of `video_path`."""
    provider = pose_provider or build_pose_provider(settings)
    session = AnalysisSession(provider, mode=AnalysisMode.POSE, settings=settings)
    source = await asyncio.to_thread(OpenCVVideoSource, video_path)
    try:
        with source:
            pattern = await session.capture_pattern(source)
    finally:
        provider.close()
    if pattern is None:
        raise RuntimeError("Benchmark capture was cancelled")
    return pattern


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="generate_benchmark",
        description="Turn a reference bowling video into a benchmark pattern document.",
    )
    parser.add_argument("video", help="Reference video file")
    parser.add_argument("-o", "--output", default="benchmark_pattern.json", help="Output JSON path")
    parser.add_argument("--fps", type=float, default=None, help="Sampling rate (default from settings)")
    parser.add_argument("--max-duration", type=float, default=None, help="Seconds of video to sample")
    parser.add_argument(
        "--providers",
        default=None,
        help="Comma-separated pose providers in priority order, e.g. movenet,mediapipe",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None, pose_provider: Optional[PoseProvider] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    overrides = {}
    if args.fps is not None:
        overrides["sampling_fps"] = args.fps
    if args.max_duration is not None:
        overrides["max_video_duration_seconds"] = args.max_duration
    if args.providers:
        overrides["pose_providers"] = [p.strip() for p in args.providers.split(",") if p.strip()]
    settings = get_settings().model_copy(update=overrides)

    if not Path(args.video).exists():
        logger.error(f"Video not found: {args.video}")
        return 2

    try:
        pattern = asyncio.run(generate_benchmark(args.video, settings, pose_provider))
    except AnalysisError as e:
        logger.error(f"Benchmark generation failed [{e.code}]: {e.detail}")
        return 1

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(pattern.to_dict(), indent=2), encoding="utf-8")

    logger.info(
        f"Wrote benchmark pattern to {output}: {pattern.length} samples, "
        f"release at frame {pattern.release_point_frame}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
