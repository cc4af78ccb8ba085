"""
Host loop tests: frame pacing, fault handling, reset and ROM loading.

Chip8GUI is built without a window; the Tk root, labels, display, audio and
gamepad are replaced by small recording stand-ins.
"""

import logging
import time
from types import SimpleNamespace

import pytest

pytest.importorskip("tkinter")
pytest.importorskip("pygame")

import chip8_emulator  # noqa: E402
from chip8_emulator import Chip8GUI  # noqa: E402
from chip8_vm import Chip8VM, EmulatorConfig  # noqa: E402


def program(*words):
    data = bytearray()
    for word in words:
        data += word.to_bytes(2, "big")
    return bytes(data)


# ═══════════════════════════════════════════════════════════════════════════
# Stand-ins
# ═══════════════════════════════════════════════════════════════════════════

class FakeRoot:
    def __init__(self):
        self.scheduled = []

    def after(self, ms, callback):
        self.scheduled.append((ms, callback))


class FakeLabel:
    def __init__(self):
        self.text = None

    def config(self, text):
        self.text = text


class FakeDisplay:
    def __init__(self):
        self.frames = []

    def render(self, buffer):
        self.frames.append(list(buffer))


class FakeAudio:
    def __init__(self):
        self.updates = []

    def update(self, beep):
        self.updates.append(beep)

    def close(self):
        pass


class FakeController:
    def __init__(self):
        self.polls = 0

    def poll(self):
        self.polls += 1

    def close(self):
        pass


def make_gui(rom=None, config=None):
    vm = Chip8VM(config or EmulatorConfig(cpu_frequency=600))
    gui = Chip8GUI.__new__(Chip8GUI)
    gui.root = FakeRoot()
    gui.vm = vm
    gui.config = vm.config
    gui.display = FakeDisplay()
    gui.audio = FakeAudio()
    gui.controller = FakeController()
    gui.rom_data = None
    gui.rom_name = ""
    gui.running = True
    gui.paused = False
    gui.halted = False
    gui.speed_multiplier = 1
    gui.fps = 0
    gui.frame_count = 0
    gui.last_fps_time = time.time()
    gui.rom_label = FakeLabel()
    gui.fps_label = FakeLabel()
    gui.state_label = FakeLabel()
    gui.speed_label = FakeLabel()
    if rom is not None:
        vm.load(rom)
        gui.rom_data = rom
        gui.rom_name = "test.ch8"
    return gui


# ═══════════════════════════════════════════════════════════════════════════
# Frame pacing
# ═══════════════════════════════════════════════════════════════════════════

class TestCyclesPerFrame:

    def test_cpu_over_timer_frequency(self):
        assert make_gui().cycles_per_frame() == 10

    def test_speed_multiplier(self):
        gui = make_gui()
        gui.speed_multiplier = 4
        assert gui.cycles_per_frame() == 40

    def test_at_least_one_cycle(self):
        gui = make_gui(config=EmulatorConfig(cpu_frequency=30))
        assert gui.cycles_per_frame() == 1

    def test_speed_controls_double_and_halve(self):
        gui = make_gui()
        gui._increase_speed()
        assert gui.speed_multiplier == 2
        assert gui.speed_label.text == "2×"
        gui._decrease_speed()
        gui._decrease_speed()
        assert gui.speed_multiplier == 1


class TestFrame:

    def test_runs_one_slice_and_ticks_once(self):
        # 7001 adds to V0, 1200 jumps back: ten steps is five additions
        gui = make_gui(program(0x7001, 0x1200))
        gui.vm.delay_timer = 3

        gui._frame()

        assert gui.vm.v[0] == 5
        assert gui.vm.delay_timer == 2
        assert gui.root.scheduled[-1][0] == 1000 // 60
        assert gui.controller.polls == 1

    def test_key_wait_stops_the_slice(self):
        gui = make_gui(program(0xF00A, 0x7101))
        gui.vm.delay_timer = 3

        gui._frame()

        assert gui.vm.waiting_for_key
        assert gui.vm.pc == 0x202
        assert gui.vm.v[1] == 0
        assert gui.vm.delay_timer == 2

    def test_fault_halts_and_logs_pc(self, caplog):
        gui = make_gui(program(0x00EE))

        with caplog.at_level(logging.ERROR, logger="chip8_emulator"):
            gui._frame()

        assert gui.halted
        assert gui.state_label.text == "Halted"
        assert gui.vm.pc == 0x200
        assert "PC=0x200" in caplog.text
        # Still reschedules so the window keeps running
        assert len(gui.root.scheduled) == 1

    def test_halted_vm_does_not_step(self):
        gui = make_gui(program(0x7001, 0x1200))
        gui.halted = True

        gui._frame()

        assert gui.vm.v[0] == 0
        assert gui.vm.pc == 0x200

    def test_render_clears_changed_flag(self):
        gui = make_gui(program(0x00E0, 0x1202))

        gui._frame()
        assert len(gui.display.frames) == 1
        assert gui.vm.framebuffer.changed is False

        gui._frame()
        assert len(gui.display.frames) == 1

    def test_paused_frame_neither_steps_nor_ticks(self):
        gui = make_gui(program(0x7001, 0x1200))
        gui.paused = True
        gui.vm.delay_timer = 3
        gui.vm.sound_timer = 3

        gui._frame()

        assert gui.vm.v[0] == 0
        assert gui.vm.delay_timer == 3
        assert gui.audio.updates == [False]

    def test_beeps_while_sound_timer_runs(self):
        gui = make_gui(program(0x1200))
        gui.vm.sound_timer = 5

        gui._frame()

        assert gui.audio.updates == [True]

    def test_stopped_loop_does_not_reschedule(self):
        gui = make_gui(program(0x1200))
        gui.running = False

        gui._frame()

        assert gui.root.scheduled == []


# ═══════════════════════════════════════════════════════════════════════════
# Controls
# ═══════════════════════════════════════════════════════════════════════════

class TestReset:

    def test_reset_reloads_rom_and_clears_halt(self):
        gui = make_gui(program(0x00EE))
        gui._frame()
        assert gui.halted

        gui.vm.v[3] = 9
        gui._reset()

        assert not gui.halted
        assert gui.vm.v[3] == 0
        assert gui.vm.pc == 0x200
        assert gui.vm.memory[0x200:0x202] == bytes([0x00, 0xEE])
        assert gui.state_label.text == "Running"

    def test_reset_without_rom_is_ignored(self):
        gui = make_gui()
        gui._reset()
        assert gui.state_label.text is None


class TestPausedInput:

    def test_press_while_paused_does_not_resume_key_wait(self):
        gui = make_gui(program(0xF00A))
        gui._frame()
        gui.paused = True

        gui._on_key_down(SimpleNamespace(keysym="Q"))

        assert gui.vm.waiting_for_key
        assert not gui.vm.keys[0x4]

    def test_release_while_paused_is_forwarded(self):
        gui = make_gui(program(0x1200))
        gui._on_key_down(SimpleNamespace(keysym="q"))
        gui.paused = True

        gui._on_key_up(SimpleNamespace(keysym="q"))

        assert not gui.vm.keys[0x4]

    def test_controller_press_after_resume(self):
        gui = make_gui(program(0xF00A))
        gui._frame()
        gui.paused = True
        gui._on_controller_key(0x7, True)
        gui.paused = False
        gui._on_controller_key(0x7, True)

        assert not gui.vm.waiting_for_key
        assert gui.vm.v[0] == 0x7


# ═══════════════════════════════════════════════════════════════════════════
# ROM loading
# ═══════════════════════════════════════════════════════════════════════════

class TestLoadRom:

    @pytest.fixture
    def errors(self, monkeypatch):
        shown = []
        monkeypatch.setattr(chip8_emulator.messagebox, "showerror",
                            lambda title, message: shown.append(message))
        return shown

    def test_load_starts_program(self, tmp_path):
        rom = tmp_path / "jump.ch8"
        rom.write_bytes(program(0x1200))
        gui = make_gui()
        gui.paused = True

        gui.load_rom(str(rom))

        assert gui.rom_data == program(0x1200)
        assert gui.rom_name == "jump.ch8"
        assert not gui.paused
        assert gui.rom_label.text == "ROM: jump.ch8 (2b)"
        assert gui.state_label.text == "Running"

    def test_oversized_rom_keeps_running_program(self, tmp_path, errors):
        good = tmp_path / "good.ch8"
        good.write_bytes(program(0x1200))
        big = tmp_path / "big.ch8"
        big.write_bytes(bytes(4000))
        gui = make_gui()
        gui.load_rom(str(good))
        gui.vm.v[2] = 0x42

        gui.load_rom(str(big))

        assert len(errors) == 1
        assert gui.rom_data == program(0x1200)
        assert gui.rom_name == "good.ch8"
        assert gui.vm.memory[0x200:0x202] == bytes([0x12, 0x00])
        assert gui.vm.v[2] == 0x42
        assert gui.vm.step()
        assert gui.vm.pc == 0x200

    def test_missing_file_reports_error(self, tmp_path, errors):
        gui = make_gui(program(0x1200))

        gui.load_rom(str(tmp_path / "missing.ch8"))

        assert len(errors) == 1
        assert gui.rom_data == program(0x1200)
        assert gui.vm.pc == 0x200
