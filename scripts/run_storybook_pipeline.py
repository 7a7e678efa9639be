"""
CLI to run the storybook pipeline end-to-end from a story request file.

Usage:
    python scripts/run_storybook_pipeline.py \
        --request story_request.yaml \
        --output-dir storybook_output
"""

from __future__ import annotations

import argparse
import mimetypes
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from glp_storybook import StorybookOrchestrator, StoryPackage, load_story_request
from glp_storybook.ai_generation import FallbackOutcome, ImageOutcome, render_placeholder
from glp_storybook.ai_generation.gemini_service import GeminiImageGenerator
from glp_storybook.ai_generation.replicate_service import ReplicateImageGenerator
from glp_storybook.pipeline import ReferenceImageAnalyzer
from glp_storybook.story_generation import StoryTextGenerator


class ProgressTracker:
    """
    Provides user-friendly command-line progress updates for the storybook pipeline.
    """

    def __init__(self) -> None:
        self._page_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "characters:allocating":
                self._write(f"[1/4] Allocating {payload.get('selected', 0)} selected character(s)...")
            case "characters:ready":
                names = ", ".join(payload.get("characters") or []) or "(none)"
                self._write(f"[1/4] Cast ready: {names}.")
            case "story:generating":
                self._write(f"[2/4] Writing a {payload.get('page_count')}-page story...")
            case "story:generated":
                self._write(f"[2/4] Story text ready ({payload.get('page_count')} pages).")
            case "page:generating":
                if self._page_bar is None:
                    self._write("[3/4] Illustrating pages...")
                    self._page_bar = tqdm(
                        total=payload.get("total_pages", 0), desc="Illustrated pages", unit="page"
                    )
                self._page_bar.set_description(f"Page {payload.get('current_page')}")
            case "page:fallback":
                self._write(
                    f"  Page {payload.get('current_page')} used a placeholder ({payload.get('category')})."
                )
            case "page:recorded":
                if self._page_bar is not None:
                    self._page_bar.update(1)
            case "run:cancelled":
                self._write(f"Cancelled after {payload.get('current_page', 0)} page(s).")
                self.close()
            case "pipeline:complete":
                self.close()
                self._write(f"[4/4] Pipeline complete ({payload.get('total_pages', 0)} pages).")

    def close(self) -> None:
        if self._page_bar is not None:
            self._page_bar.close()
            self._page_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


class CancelOnInterrupt:
    """
    First Ctrl+C asks the run to stop after the current page; a second one aborts.
    """

    def __init__(self) -> None:
        self.requested = False
        self._previous = signal.getsignal(signal.SIGINT)

    def __enter__(self) -> "CancelOnInterrupt":
        signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        signal.signal(signal.SIGINT, self._previous)

    def __call__(self) -> bool:
        return self.requested

    def _handle(self, signum: int, frame: Any) -> None:
        if self.requested:
            raise KeyboardInterrupt
        self.requested = True
        tqdm.write("Stopping after the current page (press Ctrl+C again to abort)...")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the illustrated storybook pipeline.")
    parser.add_argument(
        "--request",
        required=True,
        help="Path to the story request YAML/JSON file.",
    )
    parser.add_argument(
        "--output-dir",
        default="storybook_output",
        help="Directory that receives page images and the story package YAML.",
    )
    parser.add_argument(
        "--backend",
        choices=("replicate", "gemini"),
        default="replicate",
        help="Image generation backend (default: replicate).",
    )
    parser.add_argument(
        "--image-model",
        default=None,
        help="Override the image model identifier for the chosen backend.",
    )
    parser.add_argument(
        "--text-model",
        default=None,
        help="Override the LiteLLM model used for story text.",
    )
    parser.add_argument(
        "--pages",
        type=int,
        default=None,
        help="Override the page count when the request has no page texts.",
    )
    parser.add_argument(
        "--analyze-reference",
        dest="analyze_reference",
        action="store_true",
        default=True,
        help="Locate characters in the page-1 illustration with a vision model (default: enabled).",
    )
    parser.add_argument(
        "--no-analyze-reference",
        dest="analyze_reference",
        action="store_false",
        help="Rely on the image model's own position notes only.",
    )
    parser.add_argument(
        "--vision-model",
        default=None,
        help="Override the multimodal model used for reference analysis.",
    )
    return parser.parse_args()


def build_image_generator(backend: str, model: str | None):
    if backend == "gemini":
        return GeminiImageGenerator(model=model)
    return ReplicateImageGenerator(model_identifier=model)


def write_page_images(package: StoryPackage, output_dir: Path) -> list[Path]:
    written: list[Path] = []
    for page in package.pages:
        outcome = page.outcome
        if isinstance(outcome, ImageOutcome):
            extension = mimetypes.guess_extension(outcome.mime_type) or ".png"
            path = output_dir / f"page_{page.page_number:02d}{extension}"
            path.write_bytes(outcome.data)
        elif isinstance(outcome, FallbackOutcome):
            path = output_dir / f"page_{page.page_number:02d}_placeholder.png"
            path.write_bytes(render_placeholder(outcome.descriptor))
        else:
            continue
        written.append(path)
    return written


def main() -> int:
    args = parse_args()

    request = load_story_request(Path(args.request))
    if args.pages is not None:
        if args.pages < 1:
            raise ValueError("--pages must be at least 1.")
        request = replace(request, page_count=args.pages)

    orchestrator = StorybookOrchestrator(
        image_generator=build_image_generator(args.backend, args.image_model),
        story_generator=StoryTextGenerator(model=args.text_model),
        reference_analyzer=(
            ReferenceImageAnalyzer(model=args.vision_model) if args.analyze_reference else None
        ),
    )
    tracker = ProgressTracker()

    try:
        with CancelOnInterrupt() as cancel:
            package = orchestrator.run(request, progress_callback=tracker, should_cancel=cancel)
    finally:
        tracker.close()

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    images = write_page_images(package, output_dir)
    package_path = output_dir / "story_package.yaml"
    package_path.write_text(package.to_yaml(), encoding="utf-8")

    fallbacks = sum(1 for page in package.pages if page.is_fallback)
    print(f"Saved {len(images)} page image(s) ({fallbacks} placeholder) to {output_dir}")
    print(f"Saved story package to {package_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
