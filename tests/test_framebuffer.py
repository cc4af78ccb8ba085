"""Framebuffer drawing, clipping and collision tests."""

import pytest

from chip8_framebuffer import DISPLAY_HEIGHT, DISPLAY_WIDTH, Framebuffer


def lit(fb):
    return {(idx % fb.width, idx // fb.width) for idx, on in enumerate(fb.as_buffer()) if on}


class TestBasics:

    def test_starts_blank(self):
        fb = Framebuffer()
        buffer = fb.as_buffer()
        assert len(buffer) == DISPLAY_WIDTH * DISPLAY_HEIGHT == 2048
        assert not any(buffer)
        assert not fb.changed

    def test_clear(self):
        fb = Framebuffer()
        fb.draw(bytes([0xFF, 0xFF]), 10, 10)
        fb.changed = False
        fb.clear()
        assert not any(fb.as_buffer())
        assert fb.changed

    def test_get_pixel(self):
        fb = Framebuffer()
        fb.draw(bytes([0x80]), 5, 7)
        assert fb.get_pixel(5, 7)
        assert not fb.get_pixel(6, 7)

    @pytest.mark.parametrize("x, y", [(64, 0), (0, 32), (-1, 0)])
    def test_get_pixel_outside_grid(self, x, y):
        with pytest.raises(IndexError):
            Framebuffer().get_pixel(x, y)

    def test_snapshot_is_a_copy(self):
        fb = Framebuffer()
        buffer = fb.as_buffer()
        buffer[0] = True
        assert not fb.get_pixel(0, 0)


class TestDraw:

    def test_msb_is_leftmost(self):
        fb = Framebuffer()
        fb.draw(bytes([0b1010_0000]), 0, 0)
        assert lit(fb) == {(0, 0), (2, 0)}

    def test_rows_go_down(self):
        fb = Framebuffer()
        fb.draw(bytes([0x80, 0x00, 0x01]), 3, 4)
        assert lit(fb) == {(3, 4), (10, 6)}

    def test_draw_twice_restores_and_collides(self):
        fb = Framebuffer()
        sprite = bytes([0xF0, 0x90, 0x90, 0x90, 0xF0])
        fb.draw(bytes([0x01]), 20, 20)
        before = fb.as_buffer()

        assert fb.draw(sprite, 12, 9) is False
        assert fb.draw(sprite, 12, 9) is True
        assert fb.as_buffer() == before

    def test_no_collision_when_only_turning_on(self):
        fb = Framebuffer()
        fb.draw(bytes([0x80]), 0, 0)
        assert fb.draw(bytes([0x40]), 0, 0) is False
        assert lit(fb) == {(0, 0), (1, 0)}

    def test_collision_when_one_pixel_turned_off(self):
        fb = Framebuffer()
        fb.draw(bytes([0x80]), 0, 0)
        assert fb.draw(bytes([0xC0]), 0, 0) is True
        assert lit(fb) == {(1, 0)}

    def test_anchor_wraps(self):
        fb = Framebuffer()
        fb.draw(bytes([0x80]), 64 + 2, 32 + 1)
        assert lit(fb) == {(2, 1)}

    def test_clipped_at_right_edge(self):
        fb = Framebuffer()
        fb.draw(bytes([0xFF]), 60, 0)
        assert lit(fb) == {(60, 0), (61, 0), (62, 0), (63, 0)}

    def test_clipped_at_bottom_edge(self):
        fb = Framebuffer()
        fb.draw(bytes([0x80, 0x80, 0x80]), 0, 31)
        assert lit(fb) == {(0, 31)}

    def test_empty_sprite(self):
        fb = Framebuffer()
        assert fb.draw(b"", 0, 0) is False
        assert not any(fb.as_buffer())
