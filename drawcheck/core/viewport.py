from __future__ import annotations

from dataclasses import dataclass


MIN_SCALE = 0.2
MAX_SCALE = 5.0
ZOOM_STEP = 0.1  # 10% per button press or wheel notch

# Long side of the preview at zoom 1.0, and the cap on upscaling past native size.
PREVIEW_LONG_SIDE = 1200
MAX_NATIVE_UPSCALE = 4.0


def clamp_scale(scale: float) -> float:
    return max(MIN_SCALE, min(MAX_SCALE, scale))


@dataclass
class Viewport:
    """Zoom state for the focused page. Affects rendering only, never stored data."""

    scale: float = 1.0

    def zoom_in(self, steps: int = 1) -> float:
        for _ in range(max(0, steps)):
            self.scale = clamp_scale(self.scale * (1 + ZOOM_STEP))
        return self.scale

    def zoom_out(self, steps: int = 1) -> float:
        for _ in range(max(0, steps)):
            self.scale = clamp_scale(self.scale * (1 - ZOOM_STEP))
        return self.scale

    def wheel(self, delta_y: float, modifier: bool) -> float:
        """
        Scroll notch; only zooms while the modifier key (ctrl) is held.

        Chainlit delivers no scroll events to the server, so app.py drives the
        same 10% steps through its zoom buttons and `/zoom` instead. Kept for
        hosts that do forward wheel input.
        """
        if not modifier or delta_y == 0:
            return self.scale
        return self.zoom_out() if delta_y > 0 else self.zoom_in()

    def reset(self) -> float:
        self.scale = 1.0
        return self.scale

    @property
    def percent(self) -> int:
        return int(round(self.scale * 100))

    def display_size(self, width: int, height: int) -> tuple[int, int]:
        """Displayed pixel size for a native width x height raster at the current zoom."""
        long_side = max(1, width, height)
        factor = PREVIEW_LONG_SIDE / long_side * self.scale
        factor = min(factor, MAX_NATIVE_UPSCALE)
        return max(1, int(round(width * factor))), max(1, int(round(height * factor)))
