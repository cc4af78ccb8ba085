"""
Monochrome CHIP-8 framebuffer.

A fixed grid of on/off pixels. Sprites are XORed onto the grid and report
whether any lit pixel was switched off (collision). Knows nothing about
the CPU that drives it.
"""

from typing import List

DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32


class Framebuffer:
    """64x32 pixel grid with XOR sprite drawing"""

    def __init__(self, width: int = DISPLAY_WIDTH, height: int = DISPLAY_HEIGHT):
        self.width = width
        self.height = height
        self.pixels = [False] * (width * height)

        # Set on every clear/draw, reset by the host once it has rendered
        self.changed = False

    def clear(self):
        """Turn every pixel off"""
        self.pixels = [False] * (self.width * self.height)
        self.changed = True

    def get_pixel(self, x: int, y: int) -> bool:
        """Read a single pixel"""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} display")
        return self.pixels[y * self.width + x]

    def draw(self, sprite: bytes, x: int, y: int) -> bool:
        """
        XOR an 8-pixel wide sprite onto the display.

        The anchor wraps once onto the grid; rows and columns that run past
        the right or bottom edge are clipped. Returns True if any pixel
        that was on got turned off.
        """
        ax = x % self.width
        ay = y % self.height
        collision = False

        for row, sprite_byte in enumerate(sprite):
            py = ay + row
            if py >= self.height:
                break

            for col in range(8):
                px = ax + col
                if px >= self.width:
                    break
                if sprite_byte & (0x80 >> col):
                    idx = py * self.width + px
                    if self.pixels[idx]:
                        collision = True
                    self.pixels[idx] = not self.pixels[idx]

        self.changed = True
        return collision

    def as_buffer(self) -> List[bool]:
        """Row-major snapshot of the display"""
        return list(self.pixels)
