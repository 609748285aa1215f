#!/usr/bin/env python3
"""
Slide alignment CLI for narrated 3D presentations.

Aligns a slide deck to a word-timestamped narration transcript, validates
decks and configuration, and dry-runs a whole presentation headlessly to
check asset resolution and transition timing.
"""

import argparse
import asyncio
import logging
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add the project root to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config_loader import (
    load_presentation_config, get_alignment_config, get_animation_config,
    get_scheduler_config, get_sensor_config
)
from core.config_validation import (
    validate_presentation_config, validate_slide_deck
)
from core.transcript import load_transcript
from core.slides import load_slide_deck, save_slide_deck
from core.text_alignment import align_slides, fill_final_duration, check_alignment
from core.media_probe import get_narration_duration
from core.asset_cache import AssetCache
from core.animation import AnimationCompositor
from core.sensor_offset import SensorOffsetComposer
from core.timeline_scheduler import TimelineScheduler
from core.playback import SchedulerPhase
from core.headless import (
    FileAssetLoader, HeadlessScene, RecordingOverlay, SimulatedAudio,
    SwayingFaceTracker, VirtualClock
)

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Event loop turns given to loads and settles between simulated frames
YIELDS_PER_FRAME = 8


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Align presentation slides to narration and dry-run playback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Assign start times and durations from a transcript
  python align_slides.py align --deck data/slides.yaml --transcript workspace/transcript.json
                               --output workspace/aligned_slides.yaml --audio data/narration.mp3

  # Validate a deck (and its alignment)
  python align_slides.py validate --deck workspace/aligned_slides.yaml --detailed

  # Play the aligned deck headlessly and report transitions
  python align_slides.py simulate --deck workspace/aligned_slides.yaml
                                  --transcript workspace/transcript.json --report workspace/run.json
        """
    )
    parser.add_argument('--config', default='config/presentation.yaml',
                        help='Presentation configuration (default: config/presentation.yaml)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Align command
    align_parser = subparsers.add_parser('align', help='Align slides to a transcript')
    align_parser.add_argument('--deck', required=True, help='Path to slide deck (YAML or JSON)')
    align_parser.add_argument('--transcript', required=True, help='Path to transcript JSON')
    align_parser.add_argument('--output', required=True, help='Output path for the aligned deck')
    align_parser.add_argument('--audio', help='Narration audio, used to time the final slide')
    align_parser.add_argument('--query-words', type=int,
                              help='Leading slide words to search for (default from config)')
    align_parser.add_argument('--window-words', type=int,
                              help='Transcript words per search window (default from config)')
    align_parser.add_argument('--strict', action='store_true',
                              help='Fail if any slide cannot be matched')

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate a deck and the configuration')
    validate_parser.add_argument('--deck', required=True, help='Path to slide deck (YAML or JSON)')
    validate_parser.add_argument('--detailed', action='store_true',
                                 help='Show per-slide timing')

    # Simulate command
    simulate_parser = subparsers.add_parser('simulate', help='Dry-run an aligned deck headlessly')
    simulate_parser.add_argument('--deck', required=True, help='Path to aligned slide deck')
    simulate_parser.add_argument('--transcript', help='Transcript JSON for subtitle highlighting')
    simulate_parser.add_argument('--asset-root', help='Directory holding slide assets (default from config)')
    simulate_parser.add_argument('--skip-asset-check', action='store_true',
                                 help='Do not require asset files to exist')
    simulate_parser.add_argument('--fps', type=float, default=30.0,
                                 help='Simulated frame rate (default: 30)')
    simulate_parser.add_argument('--max-duration', type=float, default=7200.0,
                                 help='Stop after this much simulated time (default: 7200s)')
    simulate_parser.add_argument('--track-face', action='store_true',
                                 help='Feed a simulated swaying viewer into head tracking')
    simulate_parser.add_argument('--report', help='Optional path to save the run report JSON')

    return parser.parse_args(argv)


def run_align(args) -> Dict[str, Any]:
    """Align a deck and save it."""
    config = load_presentation_config(args.config)
    alignment = get_alignment_config(config)
    query_words = args.query_words or alignment['query_words']
    window_words = args.window_words or alignment['window_words']

    transcript = load_transcript(args.transcript)
    slides = load_slide_deck(args.deck)
    logger.info(f"Aligning {len(slides)} slides (query {query_words} words, window {window_words} words)")

    report = align_slides(slides, transcript, query_words=query_words, window_words=window_words)

    narration_duration = transcript.duration
    if args.audio:
        narration_duration = get_narration_duration(args.audio)
        logger.info(f"Narration audio runs {narration_duration:.1f}s")
    aligned = fill_final_duration(report.slides, narration_duration)

    if args.strict and report.unmatched:
        raise ValueError(f"{len(report.unmatched)} slide(s) could not be matched to the narration")

    save_slide_deck(aligned, args.output)
    logger.info(f"Aligned deck saved: {args.output}")

    return {
        'output': args.output,
        'matched': report.matched_count,
        'total': len(slides),
        'unmatched': [text for _, text in report.unmatched],
        'warnings': report.warnings,
    }


def run_validate(args) -> bool:
    """Validate configuration and deck, then check the deck's timing."""
    config_ok = True
    if Path(args.config).exists():
        config_ok = validate_presentation_config(args.config)

    deck_ok = validate_slide_deck(args.deck)
    timing_problems: List[str] = []
    slides = []
    if deck_ok:
        slides = load_slide_deck(args.deck, validate=False)
        timing_problems = check_alignment(slides)

    print(f"\n=== Slide Deck Validation ===")
    print(f"Deck file: {args.deck}")
    print(f"Schema: {'VALID' if deck_ok else 'INVALID'}")
    print(f"Configuration: {'VALID' if config_ok else 'INVALID'}")
    print(f"Slides: {len(slides)}")

    if timing_problems:
        print(f"\n--- Timing problems ---")
        for problem in timing_problems:
            print(f"  {problem}")

    if args.detailed and slides:
        print(f"\n--- Slide timing ---")
        for i, slide in enumerate(slides):
            start = f"{slide.start_time:7.2f}s" if slide.start_time is not None else "   none "
            duration = f"{slide.duration:6.2f}s" if slide.duration is not None else "  none "
            end = f"{slide.end_time:7.2f}s" if slide.end_time is not None else "   open "
            print(f"Slide {i:3d}: {start} +{duration} -> {end}  {slide.animation or 'default':16s} {slide.asset_ref}")

    print(f"\n=== End Validation Report ===\n")
    return config_ok and deck_ok and not timing_problems


async def simulate_presentation(slides, config: Dict[str, Any], transcript=None,
                                asset_root: str = "", check_assets: bool = True,
                                fps: float = 30.0, max_duration: float = 7200.0,
                                track_face: bool = False) -> Dict[str, Any]:
    """
    Play a deck against headless collaborators on a virtual clock.

    Returns:
        Run report with one entry per slide activation
    """
    clock = VirtualClock()
    loader = FileAssetLoader(check_exists=check_assets)
    cache = AssetCache(slides, loader, asset_root=asset_root)
    overlay = RecordingOverlay()
    scheduler = TimelineScheduler(
        slides,
        HeadlessScene(),
        cache,
        narration=SimulatedAudio('narration', clock),
        music=SimulatedAudio('music', clock),
        tracker=SwayingFaceTracker(clock) if track_face else None,
        overlay=overlay,
        transcript=transcript,
        animation=AnimationCompositor(get_animation_config(config)),
        sensor=SensorOffsetComposer(get_sensor_config(config)),
        params=get_scheduler_config(config),
        sleep=clock.sleep,
        time_source=clock
    )

    frame_dt = 1.0 / fps
    activations = []
    last_index = -1
    start_task = asyncio.ensure_future(scheduler.start())

    while clock.now < max_duration:
        scheduler.tick()
        clock.advance(frame_dt)
        for _ in range(YIELDS_PER_FRAME):
            await asyncio.sleep(0)

        state = scheduler.state
        if state.current_slide_index != last_index and state.phase is SchedulerPhase.ACTIVE:
            last_index = state.current_slide_index
            activations.append({
                'slide_index': last_index,
                'at': round(clock.now, 3),
                'timeline_time': round(scheduler.clock.timeline_time(clock.now), 3),
                'has_asset': scheduler.current_asset is not None,
            })
            logger.info(f"Slide {last_index} active at {clock.now:.2f}s")
        if start_task.done() and scheduler.phase is SchedulerPhase.FINISHED:
            break

    finished = scheduler.phase is SchedulerPhase.FINISHED
    if not finished:
        logger.warning(f"Simulation stopped at {clock.now:.1f}s before the presentation finished")
        await scheduler.stop()
    if not start_task.done():
        start_task.cancel()

    return {
        'finished': finished,
        'duration': round(clock.now, 3),
        'slides': len(slides),
        'activations': activations,
        'blank_slides': [a['slide_index'] for a in activations if not a['has_asset']],
        'subtitle_updates': len(overlay.subtitles),
        'loads': cache.load_count,
    }


def run_simulate(args) -> Dict[str, Any]:
    """Dry-run an aligned deck."""
    config = load_presentation_config(args.config)
    slides = load_slide_deck(args.deck)
    transcript = load_transcript(args.transcript) if args.transcript else None
    asset_root = args.asset_root or config['assets']['root']

    report = asyncio.run(simulate_presentation(
        slides, config,
        transcript=transcript,
        asset_root=asset_root,
        check_assets=not args.skip_asset_check,
        fps=args.fps,
        max_duration=args.max_duration,
        track_face=args.track_face
    ))

    if args.report:
        with open(args.report, 'w') as f:
            json.dump(report, f, indent=2)
        logger.info(f"Run report saved: {args.report}")
    return report


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    args = parse_arguments(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.command:
        print("Error: No command specified. Use --help for usage information.")
        sys.exit(1)

    try:
        if args.command == 'align':
            result = run_align(args)
            print(f"Aligned {result['matched']}/{result['total']} slides: {result['output']}")
            for text in result['unmatched']:
                print(f"  unmatched: {text[:60]}")

        elif args.command == 'validate':
            if not run_validate(args):
                sys.exit(1)

        elif args.command == 'simulate':
            report = run_simulate(args)
            print(f"Simulated {len(report['activations'])} slide activations in {report['duration']:.1f}s "
                  f"({report['loads']} asset loads, {len(report['blank_slides'])} blank)")
            if not report['finished']:
                sys.exit(1)

        else:
            print(f"Error: Unknown command '{args.command}'")
            sys.exit(1)

    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
