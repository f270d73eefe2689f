"""State machine constants and progress windows for the pipeline orchestrator.

Defines the ordered stages a job moves through, which states are terminal,
and the slice of overall progress each stage is allowed to report into.
"""

from typing import Dict, Tuple

# Pipeline states in execution order
PIPELINE_STATES = {
    "queued": "Job created, waiting for a worker",
    "scripting": "Writing the scene-by-scene script",
    "imaging": "Generating illustrative images",
    "narrating": "Synthesizing the voiceover",
    "generating_code": "Writing the motion-graphics composition",
    "rendering": "Rendering the final MP4",
    "completed": "Video rendered and stored",
    "failed": "Pipeline encountered an unrecoverable error",
    "cancelled": "Pipeline cancelled by the creator",
}

# Ordered generation stages (finalize runs inside "rendering")
STAGES = ("scripting", "imaging", "narrating", "generating_code", "rendering")

# State transitions for active pipeline steps
STEP_TRANSITIONS = {
    "queued": "scripting",
    "scripting": "imaging",
    "imaging": "narrating",
    "narrating": "generating_code",
    "generating_code": "rendering",
    "rendering": "completed",
}

TERMINAL_STATES = {"completed", "failed", "cancelled"}

ACTIVE_STATES = set(STEP_TRANSITIONS) - {"queued"}

# [low, high] share of overall progress per stage
PROGRESS_WINDOWS: Dict[str, Tuple[int, int]] = {
    "queued": (0, 0),
    "scripting": (0, 15),
    "imaging": (15, 40),
    "narrating": (40, 55),
    "generating_code": (55, 70),
    "rendering": (70, 95),
    "finalizing": (95, 100),
}


def is_terminal(status: str) -> bool:
    """Check if status is a final state that no pipeline run may leave."""
    return status in TERMINAL_STATES


def can_cancel(status: str) -> bool:
    """Check if a job in this status can still be cancelled."""
    return status not in TERMINAL_STATES


def window_progress(stage: str, fraction: float) -> int:
    """Map a stage-local completion fraction onto overall job progress.

    Args:
        stage: Key of PROGRESS_WINDOWS
        fraction: Stage completion in [0, 1]; values outside are clamped

    Returns:
        Absolute progress percentage (int, floor) inside the stage's window

    Examples:
        >>> window_progress("imaging", 0.5)
        27
        >>> window_progress("rendering", 1.0)
        95
    """
    low, high = PROGRESS_WINDOWS[stage]
    fraction = min(max(fraction, 0.0), 1.0)
    return low + int((high - low) * fraction)


def render_progress_step(fraction: float) -> int:
    """Round a render fraction down to the last crossed 10% boundary (0-10)."""
    fraction = min(max(fraction, 0.0), 1.0)
    return int(fraction * 10 + 1e-9)
