"""
Anti-automation countermeasures for the controlled session.

- An init script that removes the common automation fingerprints before any page script runs
- Human presence: a low-frequency background loop that moves the pointer along curved,
  velocity-shaped paths so an idle session does not look abandoned
"""

import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

ANTI_FINGERPRINT_SCRIPT = """
(() => {
    try {
        Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    } catch (e) {}

    try {
        Object.defineProperty(navigator, 'plugins', {
            get: () => [
                { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
                { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: '' },
                { name: 'Native Client', filename: 'internal-nacl-plugin', description: '' },
            ],
        });
    } catch (e) {}

    try {
        Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    } catch (e) {}

    if (!window.chrome) {
        window.chrome = {};
    }
    window.chrome.runtime = window.chrome.runtime || {};
    window.chrome.loadTimes = window.chrome.loadTimes || function () { return {}; };
    window.chrome.csi = window.chrome.csi || function () { return {}; };

    try {
        const originalQuery = window.navigator.permissions.query;
        window.navigator.permissions.query = (parameters) => (
            parameters && parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery(parameters)
        );
    } catch (e) {}
})();
"""

LOADING_OVERLAY_SELECTOR = '.loading-overlay'


@dataclass
class HumanProfile:
    """
    Pointer-motion characteristics of the simulated user.

    Each field is in [0, 1] except reaction_time_ms; higher precision means straighter paths.
    """

    reaction_time_ms: float = 250.0
    motor_precision: float = 0.85
    movement_smoothness: float = 0.8

    @classmethod
    def create_random_profile(cls) -> 'HumanProfile':
        """Create a randomized but realistic human profile."""
        return cls(
            reaction_time_ms=max(120.0, random.gauss(250, 50)),
            motor_precision=random.betavariate(3, 1),  # Skewed toward higher precision
            movement_smoothness=random.betavariate(4, 1),
        )


class PointerPathGenerator:
    """
    Generates curved pointer paths with a bell-shaped velocity profile.

    Paths are Bézier curves through perpendicular-offset control points; the per-point
    delays speed up in the middle of the movement and slow down near both ends.
    """

    def __init__(self, profile: HumanProfile, seed: Optional[int] = None):
        self.profile = profile
        self._rng = random.Random(seed if seed is not None else time.time_ns() & 0xFFFFFFFF)

    def generate(self, start: Tuple[float, float], end: Tuple[float, float],
                 num_points: int = 25) -> List[Tuple[float, float, float]]:
        """Return (x, y, delay_seconds) triples from start to end."""
        start_x, start_y = start
        end_x, end_y = end
        for name, value in (('start_x', start_x), ('start_y', start_y), ('end_x', end_x), ('end_y', end_y)):
            if math.isnan(value) or math.isinf(value):
                raise ValueError(f'Invalid {name}: {value}')

        distance = math.hypot(end_x - start_x, end_y - start_y)
        if distance < 5:
            return [(end_x, end_y, 0.05)]

        control_points = self._control_points(start_x, start_y, end_x, end_y, distance)
        path = self._bezier_curve(control_points, max(2, num_points))
        return self._apply_velocity_profile(path, distance)

    def _control_points(self, start_x: float, start_y: float,
                        end_x: float, end_y: float, distance: float) -> List[Tuple[float, float]]:
        points = [(start_x, start_y)]
        dx = end_x - start_x
        dy = end_y - start_y

        if distance > 100:
            num_controls = min(4, int(distance / 100))
            perp_x = -dy / distance
            perp_y = dx / distance
            curve_strength = 20 * (1.0 - self.profile.motor_precision) + 5
            for i in range(num_controls):
                t = (i + 1) / (num_controls + 1)
                # Strongest curve in the middle of the movement
                offset = curve_strength * math.sin(math.pi * t) * self._rng.uniform(0.5, 1.5)
                points.append((start_x + dx * t + perp_x * offset, start_y + dy * t + perp_y * offset))

        points.append((end_x, end_y))
        return points

    @staticmethod
    def _bezier_curve(control_points: List[Tuple[float, float]], num_points: int) -> List[Tuple[float, float]]:
        pts = np.asarray(control_points, dtype=float)
        n = len(pts) - 1
        t = np.linspace(0.0, 1.0, num_points)
        curve = np.zeros((num_points, 2))
        for i, point in enumerate(pts):
            coeff = math.comb(n, i) * (t ** i) * ((1 - t) ** (n - i))
            curve += np.outer(coeff, point)
        return [(float(x), float(y)) for x, y in curve]

    def _apply_velocity_profile(self, path: List[Tuple[float, float]], distance: float) -> List[Tuple[float, float, float]]:
        # Fitts-like total duration, scaled by reaction time and smoothness
        total = (self.profile.reaction_time_ms / 1000.0) * (0.6 + math.log2(1 + distance / 50) * 0.25)
        total *= 1.2 - 0.4 * self.profile.movement_smoothness
        weights = np.array([1.5 - math.sin(math.pi * i / max(1, len(path) - 1)) for i in range(len(path))])
        delays = weights / weights.sum() * total
        return [(x, y, float(d)) for (x, y), d in zip(path, delays)]


class HumanPresence:
    """
    Background pointer activity for an otherwise idle session.

    Every `min_interval`..`max_interval` seconds the pointer drifts to a random point inside
    the window, skipped while a loading overlay is shown. The page is re-fetched on every
    tick through `page_getter` so a relaunch never leaves the loop holding a dead handle.
    """

    def __init__(self, page_getter: Callable[[], object], min_interval: float = 15.0, max_interval: float = 25.0,
                 profile: Optional[HumanProfile] = None, bounds: Tuple[int, int] = (1200, 800)):
        self.page_getter = page_getter
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.bounds = bounds
        self.generator = PointerPathGenerator(profile or HumanProfile.create_random_profile())
        self._position: Tuple[float, float] = (bounds[0] / 2, bounds[1] / 2)
        self._task: Optional[asyncio.Task] = None
        self.moves = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, initial_delay: float = 0.0) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(initial_delay), name='human_presence')
        logger.debug('🖱️ Human presence loop started')

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug('🖱️ Human presence loop stopped')

    async def _run(self, initial_delay: float = 0.0) -> None:
        if initial_delay:
            await asyncio.sleep(initial_delay)
        while True:
            await asyncio.sleep(random.uniform(self.min_interval, self.max_interval))
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f'🖱️ Presence move skipped: {type(e).__name__}: {e}')

    async def tick(self) -> bool:
        """Perform one pointer drift; returns False when skipped."""
        page = self.page_getter()
        if page is None or page.is_closed():
            return False
        if await page.query_selector(LOADING_OVERLAY_SELECTOR):
            return False

        target = (random.uniform(0, self.bounds[0]), random.uniform(0, self.bounds[1]))
        for x, y, delay in self.generator.generate(self._position, target):
            await page.mouse.move(x, y)
            await asyncio.sleep(min(delay, 0.5))
        self._position = target
        self.moves += 1
        return True
