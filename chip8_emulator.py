#!/usr/bin/env python3
"""
CHIP-8 Emulator
Tkinter front end for the CHIP-8 virtual machine, with pygame audio and
gamepad support.

Everything runs on the Tk main loop: one frame callback steps the CPU,
ticks the timers, drives the beeper, polls the gamepad and repaints.
"""

import argparse
import logging
import os
import sys
import time
import tkinter as tk
from array import array
from tkinter import filedialog, messagebox
from typing import Callable, List, Optional

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame

from chip8_vm import (
    Chip8VM,
    EmulatorConfig,
    HostInputError,
    MalformedProgramError,
    ProgramTooLargeError,
)

logger = logging.getLogger(__name__)

# Window constants
STATUS_BAR_HEIGHT = 28
DEFAULT_SCALE = 10

# Colors
COLORS = {
    'bg': '#0C0C0C',
    'pixel_on': '#C0C0C0',
    'pixel_off': '#1A1A1A',
    'status_bg': '#1E1E1E',
    'status_fg': '#707070',
    'accent': '#4A9EFF',
}

BEEP_FREQUENCY = 700
MAX_SPEED_MULTIPLIER = 16

# ============================================================================
# KEYBOARD MAPPING
# ============================================================================

# CHIP-8 Hex Keypad    PC Keyboard
#  1 2 3 C             1 2 3 4
#  4 5 6 D      →      Q W E R
#  7 8 9 E             A S D F
#  A 0 B F             Z X C V

KEYBOARD_MAP = {
    '1': 0x1, '2': 0x2, '3': 0x3, '4': 0xC,
    'q': 0x4, 'w': 0x5, 'e': 0x6, 'r': 0xD,
    'a': 0x7, 's': 0x8, 'd': 0x9, 'f': 0xE,
    'z': 0xA, 'x': 0x0, 'c': 0xB, 'v': 0xF,
}

# ============================================================================
# AUDIO SYSTEM
# ============================================================================

def square_wave(frequency: int, sample_rate: int, channels: int = 1, volume: float = 0.25) -> bytes:
    """One period of a signed 16-bit square wave, interleaved for `channels`"""
    period = max(2, sample_rate // frequency)
    amplitude = int(32767 * volume)
    high = period // 2
    samples = array('h')
    for idx in range(period):
        level = amplitude if idx < high else -amplitude
        samples.extend([level] * channels)
    return samples.tobytes()


class Chip8Audio:
    """Sound timer beeper: looping pygame tone, terminal bell without a mixer"""

    def __init__(self, frequency: int = BEEP_FREQUENCY):
        self.is_beeping = False
        self._tone: Optional[pygame.mixer.Sound] = None

        try:
            pygame.mixer.init(frequency=44100, size=-16, channels=1)
            sample_rate, _, channels = pygame.mixer.get_init()
            self._tone = pygame.mixer.Sound(buffer=square_wave(frequency, sample_rate, channels))
        except pygame.error as e:
            logger.warning("Audio mixer unavailable (%s), falling back to terminal bell", e)

    def start_beep(self):
        if self.is_beeping:
            return
        self.is_beeping = True
        if self._tone is not None:
            self._tone.play(loops=-1)
        else:
            print('\a', end='', flush=True)

    def stop_beep(self):
        if not self.is_beeping:
            return
        self.is_beeping = False
        if self._tone is not None:
            self._tone.stop()

    def update(self, beep: bool):
        if beep:
            self.start_beep()
        else:
            self.stop_beep()

    def close(self):
        self.stop_beep()
        if self._tone is not None:
            pygame.mixer.quit()


# ============================================================================
# GAMEPAD INPUT
# ============================================================================

class Chip8Controller:
    """Gamepad input mapped onto the CHIP-8 keypad, polled once per frame"""

    # Controller button mappings for PS5/Atari style
    BUTTON_SQUARE = 0
    BUTTON_CIRCLE = 1
    BUTTON_CROSS = 2
    BUTTON_TRIANGLE = 3
    BUTTON_L1 = 4
    BUTTON_R1 = 5
    BUTTON_L2 = 6
    BUTTON_R2 = 7
    BUTTON_SHARE = 8
    BUTTON_OPTIONS = 9

    BUTTON_TO_KEY = {
        BUTTON_CIRCLE: 0x1,
        BUTTON_SQUARE: 0x2,
        BUTTON_TRIANGLE: 0x3,
        BUTTON_CROSS: 0xC,
        BUTTON_L1: 0x4,
        BUTTON_R1: 0x5,
        BUTTON_L2: 0xD,
        BUTTON_R2: 0xE,
    }

    # D-Pad (as hat) to CHIP-8 keys (2=down, 4=left, 6=right, 8=up)
    HAT_TO_KEY = {
        (0, 1): 0x8,
        (0, -1): 0x2,
        (-1, 0): 0x4,
        (1, 0): 0x6,
    }

    def __init__(self, on_key_change: Callable[[int, bool], None]):
        self.on_key_change = on_key_change
        self.joystick = None
        self.connected = False
        self._buttons: List[bool] = []
        self._hat_key: Optional[int] = None

        # Special action callbacks
        self.on_reset: Optional[Callable] = None
        self.on_pause_toggle: Optional[Callable] = None

        pygame.init()
        pygame.joystick.init()

    def poll(self):
        """Check connection and forward button changes"""
        try:
            pygame.event.pump()
            self._check_connection()
            if self.connected:
                self._process_input()
        except pygame.error as e:
            logger.warning("Controller polling failed: %s", e)
            self._disconnect()

    def _check_connection(self):
        joystick_count = pygame.joystick.get_count()

        if joystick_count > 0 and not self.connected:
            self.joystick = pygame.joystick.Joystick(0)
            self.joystick.init()
            self.connected = True
            self._buttons = [False] * self.joystick.get_numbuttons()
            logger.info("Controller connected: %s", self.joystick.get_name())
        elif joystick_count == 0 and self.connected:
            logger.info("Controller disconnected")
            self._disconnect()

    def _disconnect(self):
        # Release anything still held so the VM doesn't see a stuck key
        for button, held in enumerate(self._buttons):
            if held and button in self.BUTTON_TO_KEY:
                self.on_key_change(self.BUTTON_TO_KEY[button], False)
        if self._hat_key is not None:
            self.on_key_change(self._hat_key, False)

        self.connected = False
        self.joystick = None
        self._buttons = []
        self._hat_key = None

    def _process_input(self):
        for button in range(len(self._buttons)):
            held = bool(self.joystick.get_button(button))
            if held != self._buttons[button]:
                self._buttons[button] = held
                self._handle_button(button, held)

        if self.joystick.get_numhats() > 0:
            self._handle_hat(self.joystick.get_hat(0))

    def _handle_button(self, button: int, held: bool):
        if button in self.BUTTON_TO_KEY:
            self.on_key_change(self.BUTTON_TO_KEY[button], held)
        elif held and button == self.BUTTON_OPTIONS and self.on_reset:
            self.on_reset()
        elif held and button == self.BUTTON_SHARE and self.on_pause_toggle:
            self.on_pause_toggle()

    def _handle_hat(self, value: tuple):
        key = self.HAT_TO_KEY.get(value)
        if key == self._hat_key:
            return
        if self._hat_key is not None:
            self.on_key_change(self._hat_key, False)
        if key is not None:
            self.on_key_change(key, True)
        self._hat_key = key

    def close(self):
        pygame.joystick.quit()


# ============================================================================
# DISPLAY RENDERER
# ============================================================================

class Chip8Display:
    """Tkinter canvas-based display renderer"""

    def __init__(self, root: tk.Misc, width: int, height: int, scale: int):
        self.width = width
        self.height = height
        self.scale = scale

        self.canvas = tk.Canvas(
            root,
            width=width * scale,
            height=height * scale,
            bg=COLORS['bg'],
            highlightthickness=0
        )
        self.canvas.pack(side=tk.TOP)

        # Pre-create pixel rectangles
        self.pixel_rects: List[int] = []
        self._lit: List[bool] = []
        self._create_pixels()

    def _create_pixels(self):
        """Create pixel grid"""
        self.canvas.delete("all")
        self.pixel_rects.clear()

        for y in range(self.height):
            for x in range(self.width):
                x1 = x * self.scale
                y1 = y * self.scale
                rect = self.canvas.create_rectangle(
                    x1, y1, x1 + self.scale, y1 + self.scale,
                    fill=COLORS['pixel_off'],
                    outline=""
                )
                self.pixel_rects.append(rect)

        self._lit = [False] * len(self.pixel_rects)

    def render(self, buffer: List[bool]):
        """Repaint the pixels that changed since the last render"""
        for idx, pixel in enumerate(buffer):
            if pixel != self._lit[idx]:
                color = COLORS['pixel_on'] if pixel else COLORS['pixel_off']
                self.canvas.itemconfig(self.pixel_rects[idx], fill=color)
                self._lit[idx] = pixel


# ============================================================================
# MAIN GUI APPLICATION
# ============================================================================

class Chip8GUI:
    """Host loop: owns the window and paces the VM"""

    def __init__(self, root: tk.Tk, vm: Chip8VM, display: Chip8Display,
                 audio: Chip8Audio, controller: Chip8Controller):
        self.root = root
        self.vm = vm
        self.config = vm.config
        self.display = display
        self.audio = audio
        self.controller = controller

        # State
        self.rom_data: Optional[bytes] = None
        self.rom_name = ""
        self.running = False
        self.paused = False
        self.halted = False
        self.speed_multiplier = 1
        self.fps = 0
        self.frame_count = 0
        self.last_fps_time = time.time()

        self.root.title("CHIP-8")
        self.root.resizable(False, False)
        self.root.configure(bg=COLORS['bg'])

        self._create_status_bar()
        self._bind_keys()

        self.controller.on_key_change = self._on_controller_key
        self.controller.on_reset = self._reset
        self.controller.on_pause_toggle = self._toggle_pause

    def _create_status_bar(self):
        """Create status labels"""
        self.status_frame = tk.Frame(
            self.root,
            height=STATUS_BAR_HEIGHT,
            bg=COLORS['status_bg']
        )
        self.status_frame.pack(side=tk.BOTTOM, fill=tk.X)
        self.status_frame.pack_propagate(False)

        def label(text, side, fg=COLORS['status_fg']):
            widget = tk.Label(
                self.status_frame,
                text=text,
                fg=fg,
                bg=COLORS['status_bg'],
                font=("Consolas", 9)
            )
            widget.pack(side=side, padx=10)
            return widget

        self.rom_label = label("No ROM - Ctrl+O to load", tk.LEFT)
        self.fps_label = label("FPS: --", tk.LEFT)
        self.state_label = label("Stopped", tk.RIGHT)
        self.speed_label = label("1×", tk.RIGHT, fg=COLORS['accent'])

    def _bind_keys(self):
        """Bind keyboard events"""
        self.root.bind("<KeyPress>", self._on_key_down)
        self.root.bind("<KeyRelease>", self._on_key_up)

        # Emulator controls
        self.root.bind("<Escape>", lambda e: self._on_close())
        self.root.bind("<space>", lambda e: self._toggle_pause())
        self.root.bind("<F9>", lambda e: self._reset())
        self.root.bind("<Control-r>", lambda e: self._reset())
        self.root.bind("<Control-o>", lambda e: self._open_file_dialog())
        self.root.bind("<F1>", lambda e: self._decrease_speed())
        self.root.bind("<F2>", lambda e: self._increase_speed())

    # ==================== INPUT ====================

    def _on_key_down(self, event):
        key = event.keysym.lower()
        if key in KEYBOARD_MAP:
            self._forward_key(KEYBOARD_MAP[key], True)

    def _on_key_up(self, event):
        key = event.keysym.lower()
        if key in KEYBOARD_MAP:
            self._forward_key(KEYBOARD_MAP[key], False)

    def _on_controller_key(self, key: int, pressed: bool):
        self._forward_key(key, pressed)

    def _forward_key(self, key: int, pressed: bool):
        # Presses are dropped while paused so they cannot satisfy FX0A;
        # releases always go through so no key stays stuck down
        if pressed and self.paused:
            return
        self.vm.set_key(key, pressed)

    # ==================== ROM LOADING ====================

    def _open_file_dialog(self):
        """Open file dialog to select ROM"""
        filepath = filedialog.askopenfilename(
            title="Select CHIP-8 ROM",
            filetypes=[
                ("CHIP-8 ROM", "*.ch8"),
                ("CHIP-8 ROM", "*.c8"),
                ("All files", "*.*")
            ]
        )
        if filepath:
            self.load_rom(filepath)

    def load_rom(self, filepath: str):
        """Load ROM from file and start running it"""
        try:
            with open(filepath, 'rb') as f:
                data = f.read()
            # Reject before reset() so a bad file never wipes the running ROM
            max_size = self.config.memory_size - self.config.program_start
            if len(data) > max_size:
                raise ProgramTooLargeError(f"ROM too large: {len(data)} bytes (max {max_size})")
            self.vm.reset()
            self.vm.load(data)
        except (OSError, HostInputError) as e:
            logger.error("Failed to load ROM %s: %s", filepath, e)
            messagebox.showerror("Error", f"Failed to load ROM:\n{e}")
            return

        self.rom_data = data
        self.rom_name = os.path.basename(filepath)
        self.halted = False
        self.paused = False
        self.rom_label.config(text=f"ROM: {self.rom_name} ({len(data)}b)")
        logger.info("Loaded ROM %s (%d bytes)", self.rom_name, len(data))
        self._update_status()

    # ==================== HOST LOOP ====================

    def cycles_per_frame(self) -> int:
        cycles = (self.config.cpu_frequency * self.speed_multiplier) // self.config.timer_frequency
        return max(1, cycles)

    def _frame(self):
        """One timer period: run a slice of instructions, tick, render"""
        if not self.running:
            return

        if self.rom_data is not None and not self.paused and not self.halted:
            try:
                for _ in range(self.cycles_per_frame()):
                    if not self.vm.step():
                        break
            except MalformedProgramError as e:
                self._halt(e)
            self.vm.tick_timers()

        self.audio.update(self.vm.should_beep() and not self.paused and not self.halted)
        self.controller.poll()

        framebuffer = self.vm.framebuffer
        if framebuffer.changed:
            self.display.render(framebuffer.as_buffer())
            framebuffer.changed = False

        self._count_frame()
        self.root.after(1000 // self.config.timer_frequency, self._frame)

    def _count_frame(self):
        self.frame_count += 1
        now = time.time()
        if now - self.last_fps_time >= 1.0:
            self.fps = self.frame_count
            self.frame_count = 0
            self.last_fps_time = now
            self.fps_label.config(text=f"FPS: {self.fps}")

    def _halt(self, error: MalformedProgramError):
        self.halted = True
        logger.error("Program fault at PC=%#05x: %s", self.vm.pc, error)
        self._update_status()

    def _update_status(self):
        """Update status bar"""
        if self.halted:
            self.state_label.config(text="Halted")
        elif self.rom_data is None:
            self.state_label.config(text="Stopped")
        elif self.paused:
            self.state_label.config(text="Paused")
        else:
            self.state_label.config(text="Running")

        self.speed_label.config(text=f"{self.speed_multiplier}×")

    # ==================== CONTROLS ====================

    def _reset(self):
        """Reset emulator with current ROM"""
        if self.rom_data is None:
            return
        self.vm.reset()
        self.vm.load(self.rom_data)
        self.halted = False
        logger.info("Reset %s", self.rom_name)
        self._update_status()

    def _toggle_pause(self):
        self.paused = not self.paused
        logger.info("Paused" if self.paused else "Resumed")
        self._update_status()

    def _increase_speed(self):
        if self.speed_multiplier < MAX_SPEED_MULTIPLIER:
            self.speed_multiplier *= 2
            self._update_status()

    def _decrease_speed(self):
        if self.speed_multiplier > 1:
            self.speed_multiplier //= 2
            self._update_status()

    def run(self):
        """Start the host loop and the Tk main loop"""
        self.root.protocol("WM_DELETE_WINDOW", self._on_close)
        self.running = True
        self._update_status()
        self._frame()
        self.root.mainloop()

    def _on_close(self):
        self.running = False
        self.audio.close()
        self.controller.close()
        self.root.destroy()


# ============================================================================
# ENTRY POINT
# ============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CHIP-8 emulator")
    parser.add_argument("rom_path", nargs="?", metavar="ROM",
                        help="CHIP-8 program to load")
    parser.add_argument("-r", "--rom", dest="rom_option", metavar="ROM",
                        help="CHIP-8 program to load (same as the positional argument)")
    parser.add_argument("--speed", type=int, default=EmulatorConfig.cpu_frequency,
                        help="Instructions executed per second (default: %(default)s)")
    parser.add_argument("--scale", type=int, default=DEFAULT_SCALE,
                        help="Screen pixels per CHIP-8 pixel (default: %(default)s)")
    parser.add_argument("--jump-quirk", choices=("index", "pc"), default="index",
                        help="BNNN loads I (index) or jumps (pc) to NNN + V0 (default: %(default)s)")
    parser.add_argument("--log-level", default="WARNING",
                        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
                        help="Logging verbosity (default: %(default)s)")

    args = parser.parse_args(argv)
    if args.speed <= 0:
        parser.error("--speed must be positive")
    if args.scale <= 0:
        parser.error("--scale must be positive")
    args.rom = args.rom_option or args.rom_path
    return args


def build_config(args: argparse.Namespace) -> EmulatorConfig:
    return EmulatorConfig(
        cpu_frequency=args.speed,
        jump_sets_index=(args.jump_quirk == "index"),
    )


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = build_config(args)
    vm = Chip8VM(config)

    root = tk.Tk()
    display = Chip8Display(root, config.display_width, config.display_height, args.scale)
    audio = Chip8Audio()
    controller = Chip8Controller(on_key_change=vm.set_key)
    app = Chip8GUI(root, vm, display, audio, controller)

    if args.rom:
        if os.path.exists(args.rom):
            app.load_rom(args.rom)
        else:
            logger.error("ROM not found: %s", args.rom)

    app.run()


if __name__ == "__main__":
    sys.exit(main())
