"""
CHIP-8 virtual machine core.

Pure state container: 4KB memory, sixteen 8-bit registers, index register,
program counter, call stack, delay/sound timers, 16-key keypad and a
64x32 framebuffer. The host feeds it program bytes, key events and timer
ticks, and reads the framebuffer and beep flag back out. No I/O happens here.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from chip8_decoder import Instruction, Op, decode
from chip8_errors import (
    Chip8Error,
    HostInputError,
    InvalidKeyError,
    KeyIndexError,
    MalformedProgramError,
    MemoryAccessError,
    ProgramTooLargeError,
    StackUnderflowError,
    UnknownOpcodeError,
)
from chip8_framebuffer import DISPLAY_HEIGHT, DISPLAY_WIDTH, Framebuffer

__all__ = [
    "Chip8VM", "EmulatorConfig", "FONT_4X5", "FONT_SPRITE_LEN",
    "Chip8Error", "HostInputError", "InvalidKeyError", "KeyIndexError",
    "MalformedProgramError", "MemoryAccessError", "ProgramTooLargeError",
    "StackUnderflowError", "UnknownOpcodeError",
]

logger = logging.getLogger(__name__)

NUM_REGISTERS = 16
NUM_KEYS = 16
FONT_SPRITE_LEN = 5

# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class EmulatorConfig:
    """Emulator configuration settings"""
    # Memory
    memory_size: int = 4096
    program_start: int = 0x200
    font_start: int = 0x050

    # Display
    display_width: int = DISPLAY_WIDTH
    display_height: int = DISPLAY_HEIGHT

    # Timing (host pacing, the VM itself never sleeps)
    cpu_frequency: int = 500      # Instructions per second
    timer_frequency: int = 60     # Timer decrement rate (Hz)

    # BNNN loads I with NNN + V0 instead of jumping there
    jump_sets_index: bool = True


# ============================================================================
# CHIP-8 FONT
# ============================================================================

# Standard 4x5 font (0-F) - 80 bytes at font_start
FONT_4X5 = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])


def _random_byte() -> int:
    return random.randint(0, 255)


# ============================================================================
# CHIP-8 VIRTUAL MACHINE
# ============================================================================

class Chip8VM:
    """
    CHIP-8 virtual machine.

    Every opcode is validated before it touches any state, so a faulting
    step() raises and leaves the machine exactly as it found it.
    """

    def __init__(self, config: Optional[EmulatorConfig] = None, rng: Optional[Callable[[], int]] = None):
        self.config = config or EmulatorConfig()
        self.rng = rng or _random_byte

        self._handlers: Dict[Op, Callable[[Instruction], None]] = {
            Op.CLS: self._op_cls,
            Op.RET: self._op_ret,
            Op.JP: self._op_jp,
            Op.CALL: self._op_call,
            Op.SE_BYTE: self._op_se_byte,
            Op.SNE_BYTE: self._op_sne_byte,
            Op.SE_REG: self._op_se_reg,
            Op.SNE_REG: self._op_sne_reg,
            Op.LD_BYTE: self._op_ld_byte,
            Op.ADD_BYTE: self._op_add_byte,
            Op.LD_REG: self._op_ld_reg,
            Op.OR: self._op_or,
            Op.AND: self._op_and,
            Op.XOR: self._op_xor,
            Op.ADD_REG: self._op_add_reg,
            Op.SUB: self._op_sub,
            Op.SHR: self._op_shr,
            Op.SUBN: self._op_subn,
            Op.SHL: self._op_shl,
            Op.LD_I: self._op_ld_i,
            Op.JP_V0: self._op_jp_v0,
            Op.RND: self._op_rnd,
            Op.DRW: self._op_drw,
            Op.SKP: self._op_skp,
            Op.SKNP: self._op_sknp,
            Op.LD_VX_DT: self._op_ld_vx_dt,
            Op.LD_K: self._op_ld_k,
            Op.LD_DT: self._op_ld_dt,
            Op.LD_ST: self._op_ld_st,
            Op.ADD_I: self._op_add_i,
            Op.LD_F: self._op_ld_f,
            Op.LD_B: self._op_ld_b,
            Op.LD_MEM: self._op_ld_mem,
            Op.LD_REGS: self._op_ld_regs,
        }

        self.reset()

    def reset(self):
        """Reset VM to initial power-on state"""
        cfg = self.config

        # Main memory (4KB), font in low memory
        self.memory = bytearray(cfg.memory_size)
        self.memory[cfg.font_start:cfg.font_start + len(FONT_4X5)] = FONT_4X5

        # 16 general-purpose 8-bit registers V0-VF
        self.v = [0] * NUM_REGISTERS

        # 16-bit index register and program counter
        self.i = 0
        self.pc = cfg.program_start

        # Return addresses, grows as needed
        self.stack: List[int] = []

        # Timers (decrement at 60Hz when non-zero)
        self.delay_timer = 0
        self.sound_timer = 0

        self.framebuffer = Framebuffer(cfg.display_width, cfg.display_height)

        # Input state (16 keys)
        self.keys = [False] * NUM_KEYS

        # FX0A blocking
        self.waiting_for_key = False
        self.key_register = 0

    # ==================== HOST INTERFACE ====================

    def load(self, data: bytes):
        """Copy a program image into memory at 0x200 and point PC at it"""
        start = self.config.program_start
        max_size = self.config.memory_size - start
        if len(data) > max_size:
            raise ProgramTooLargeError(f"ROM too large: {len(data)} bytes (max {max_size})")

        self.memory[start:start + len(data)] = data
        self.pc = start
        logger.debug("Loaded %d byte program at %#05x", len(data), start)

    def step(self) -> bool:
        """
        Fetch and execute one instruction.
        Returns True if an instruction ran, False while waiting for a key.
        """
        if self.waiting_for_key:
            return False

        opcode = self._fetch()
        self.execute(opcode)
        return True

    def execute(self, opcode: int):
        """
        Decode and execute one opcode as if it had just been fetched from PC:
        PC moves past it first, so skips and returns land where step() would.
        """
        ins = decode(opcode)
        pc = self.pc
        self.pc += 2
        try:
            self._handlers[ins.op](ins)
        except MalformedProgramError:
            self.pc = pc
            raise

    def tick_timers(self):
        """Update delay and sound timers (call at 60Hz)"""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    def set_key(self, key: int, pressed: bool):
        """Record a key press/release, resuming FX0A on a press"""
        if not isinstance(key, int) or not 0 <= key < NUM_KEYS:
            raise InvalidKeyError(f"Key out of range 0-15: {key!r}")
        if not isinstance(pressed, bool):
            raise InvalidKeyError(f"Key state must be a bool, got {pressed!r}")

        self.keys[key] = pressed
        if pressed and self.waiting_for_key:
            self.v[self.key_register] = key
            self.waiting_for_key = False
            logger.debug("Key %X resumed execution into V%X", key, self.key_register)

    def should_beep(self) -> bool:
        return self.sound_timer > 0

    def read_framebuffer(self) -> List[bool]:
        """Row-major 64x32 snapshot of the display"""
        return self.framebuffer.as_buffer()

    # ==================== MEMORY ACCESS ====================

    def _fetch(self) -> int:
        pc = self.pc
        self._check_range(pc, 2)
        return (self.memory[pc] << 8) | self.memory[pc + 1]

    def _check_range(self, addr: int, length: int):
        if addr < 0 or addr + length > len(self.memory):
            raise MemoryAccessError(
                f"Access of {length} byte(s) at {addr:#06x} outside {len(self.memory)} byte memory"
            )

    def _key_for(self, x: int) -> int:
        key = self.v[x]
        if key >= NUM_KEYS:
            raise KeyIndexError(f"V{x:X} holds {key:#04x}, not a key 0-F")
        return key

    # ==================== FLOW CONTROL ====================

    def _op_cls(self, ins: Instruction):
        self.framebuffer.clear()

    def _op_ret(self, ins: Instruction):
        if not self.stack:
            raise StackUnderflowError("Return with empty call stack")
        self.pc = self.stack.pop()

    def _op_jp(self, ins: Instruction):
        self.pc = ins.nnn

    def _op_call(self, ins: Instruction):
        self.stack.append(self.pc)
        self.pc = ins.nnn

    def _op_jp_v0(self, ins: Instruction):
        # Two readings exist in the wild, see EmulatorConfig.jump_sets_index
        target = ins.nnn + self.v[0]
        if self.config.jump_sets_index:
            self.i = target
        else:
            self.pc = target

    # ==================== SKIPS ====================

    def _skip_if(self, condition: bool):
        if condition:
            self.pc += 2

    def _op_se_byte(self, ins: Instruction):
        self._skip_if(self.v[ins.x] == ins.kk)

    def _op_sne_byte(self, ins: Instruction):
        self._skip_if(self.v[ins.x] != ins.kk)

    def _op_se_reg(self, ins: Instruction):
        self._skip_if(self.v[ins.x] == self.v[ins.y])

    def _op_sne_reg(self, ins: Instruction):
        self._skip_if(self.v[ins.x] != self.v[ins.y])

    def _op_skp(self, ins: Instruction):
        self._skip_if(self.keys[self._key_for(ins.x)])

    def _op_sknp(self, ins: Instruction):
        self._skip_if(not self.keys[self._key_for(ins.x)])

    # ==================== REGISTERS ====================

    def _op_ld_byte(self, ins: Instruction):
        self.v[ins.x] = ins.kk

    def _op_add_byte(self, ins: Instruction):
        # No carry flag
        self.v[ins.x] = (self.v[ins.x] + ins.kk) & 0xFF

    def _op_ld_i(self, ins: Instruction):
        self.i = ins.nnn

    def _op_rnd(self, ins: Instruction):
        self.v[ins.x] = (self.rng() & 0xFF) & ins.kk

    # ==================== ALU (8XYN) ====================
    # VF is written after the result so it holds the flag even when X is F

    def _op_ld_reg(self, ins: Instruction):
        self.v[ins.x] = self.v[ins.y]

    def _op_or(self, ins: Instruction):
        self.v[ins.x] |= self.v[ins.y]

    def _op_and(self, ins: Instruction):
        self.v[ins.x] &= self.v[ins.y]

    def _op_xor(self, ins: Instruction):
        self.v[ins.x] ^= self.v[ins.y]

    def _op_add_reg(self, ins: Instruction):
        result = self.v[ins.x] + self.v[ins.y]
        self.v[ins.x] = result & 0xFF
        self.v[0xF] = 1 if result > 0xFF else 0

    def _op_sub(self, ins: Instruction):
        vx, vy = self.v[ins.x], self.v[ins.y]
        self.v[ins.x] = (vx - vy) & 0xFF
        self.v[0xF] = 1 if vx >= vy else 0

    def _op_subn(self, ins: Instruction):
        vx, vy = self.v[ins.x], self.v[ins.y]
        self.v[ins.x] = (vy - vx) & 0xFF
        self.v[0xF] = 1 if vy >= vx else 0

    def _op_shr(self, ins: Instruction):
        vx = self.v[ins.x]
        self.v[ins.x] = vx >> 1
        self.v[0xF] = vx & 0x01

    def _op_shl(self, ins: Instruction):
        vx = self.v[ins.x]
        self.v[ins.x] = (vx << 1) & 0xFF
        self.v[0xF] = (vx >> 7) & 0x01

    # ==================== DISPLAY ====================

    def _op_drw(self, ins: Instruction):
        self._check_range(self.i, ins.n)
        sprite = bytes(self.memory[self.i:self.i + ins.n])
        collision = self.framebuffer.draw(sprite, self.v[ins.x], self.v[ins.y])
        self.v[0xF] = 1 if collision else 0

    # ==================== TIMERS & INPUT ====================

    def _op_ld_vx_dt(self, ins: Instruction):
        self.v[ins.x] = self.delay_timer

    def _op_ld_dt(self, ins: Instruction):
        self.delay_timer = self.v[ins.x]

    def _op_ld_st(self, ins: Instruction):
        self.sound_timer = self.v[ins.x]

    def _op_ld_k(self, ins: Instruction):
        # PC already points past FX0A; set_key() resumes from there
        self.waiting_for_key = True
        self.key_register = ins.x
        logger.debug("Waiting for key into V%X", ins.x)

    # ==================== INDEX & MEMORY ====================

    def _op_add_i(self, ins: Instruction):
        self.i = (self.i + self.v[ins.x]) & 0xFFFF

    def _op_ld_f(self, ins: Instruction):
        self.i = self.config.font_start + FONT_SPRITE_LEN * self.v[ins.x]

    def _op_ld_b(self, ins: Instruction):
        self._check_range(self.i, 3)
        value = self.v[ins.x]
        self.memory[self.i] = value // 100
        self.memory[self.i + 1] = (value // 10) % 10
        self.memory[self.i + 2] = value % 10

    def _op_ld_mem(self, ins: Instruction):
        self._check_range(self.i, ins.x + 1)
        for idx in range(ins.x + 1):
            self.memory[self.i + idx] = self.v[idx]

    def _op_ld_regs(self, ins: Instruction):
        self._check_range(self.i, ins.x + 1)
        for idx in range(ins.x + 1):
            self.v[idx] = self.memory[self.i + idx]
