"""
Animation Session

Runs a Scene on a timer and publishes frames through a callback.

Frames come from the monotonic clock, not from counting ticks, so a late
tick never drifts the animation. After stop() no further frame is published.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from socratic_calculus_tutor.config import ANIMATION_TICK_SECONDS
from socratic_calculus_tutor.whiteboard import Frame, Scene

logger = logging.getLogger(__name__)

FrameCallback = Callable[[Frame], None]


class AnimationSession:
    """
    Cancellable animation timer for one scene.

    One session per visualization: replacing the visualization means stopping
    the old session and starting a new one.
    """

    def __init__(
        self,
        scene: Scene,
        on_frame: FrameCallback,
        tick_seconds: float = ANIMATION_TICK_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scene = scene
        self.on_frame = on_frame
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.started_at: Optional[float] = None
        self.task: Optional[asyncio.Task] = None
        self.running = False

    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, self.clock() - self.started_at)

    def start(self):
        """Start ticking. Must be called from inside a running event loop."""
        if self.running:
            logger.warning("⚠️ [AnimationSession] Already running")
            return

        self.running = True
        self.started_at = self.clock()
        self.task = asyncio.get_running_loop().create_task(self._loop())
        logger.debug(f"🎬 [AnimationSession] Started {self.scene.kind} animation")

    async def stop(self):
        """Stop the timer; safe to call more than once."""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

    def cancel(self):
        """Synchronous stop for callers outside a coroutine."""
        self.running = False
        if self.task:
            self.task.cancel()
            self.task = None

    async def _loop(self):
        while self.running:
            frame = self.scene.frame_at(self.elapsed())
            if not self.running:
                break
            self._publish(frame)
            if frame.complete:
                self.running = False
                logger.debug(f"✅ [AnimationSession] {self.scene.kind} animation complete")
                break
            await asyncio.sleep(self.tick_seconds)

    def _publish(self, frame: Frame):
        try:
            self.on_frame(frame)
        except Exception as e:
            # A broken subscriber must not kill the timer
            logger.error(f"❌ [AnimationSession] Frame callback failed: {e}")
