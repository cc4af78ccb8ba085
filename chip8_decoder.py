"""
CHIP-8 instruction decoder.

Splits a 16-bit opcode into its four nibbles and maps it onto a closed set
of instruction variants. Operands are extracted once here so the CPU never
has to pick bits out of a raw word.
"""

from dataclasses import dataclass
from enum import Enum, auto

from chip8_errors import UnknownOpcodeError


class Op(Enum):
    """Base CHIP-8 instruction set (35 opcodes less 0NNN SYS)"""
    CLS = auto()        # 00E0
    RET = auto()        # 00EE
    JP = auto()         # 1NNN
    CALL = auto()       # 2NNN
    SE_BYTE = auto()    # 3XKK
    SNE_BYTE = auto()   # 4XKK
    SE_REG = auto()     # 5XY0
    LD_BYTE = auto()    # 6XKK
    ADD_BYTE = auto()   # 7XKK
    LD_REG = auto()     # 8XY0
    OR = auto()         # 8XY1
    AND = auto()        # 8XY2
    XOR = auto()        # 8XY3
    ADD_REG = auto()    # 8XY4
    SUB = auto()        # 8XY5
    SHR = auto()        # 8XY6
    SUBN = auto()       # 8XY7
    SHL = auto()        # 8XYE
    SNE_REG = auto()    # 9XY0
    LD_I = auto()       # ANNN
    JP_V0 = auto()      # BNNN
    RND = auto()        # CXKK
    DRW = auto()        # DXYN
    SKP = auto()        # EX9E
    SKNP = auto()       # EXA1
    LD_VX_DT = auto()   # FX07
    LD_K = auto()       # FX0A
    LD_DT = auto()      # FX15
    LD_ST = auto()      # FX18
    ADD_I = auto()      # FX1E
    LD_F = auto()       # FX29
    LD_B = auto()       # FX33
    LD_MEM = auto()     # FX55
    LD_REGS = auto()    # FX65


@dataclass(frozen=True)
class Instruction:
    op: Op
    opcode: int
    x: int
    y: int
    n: int
    kk: int
    nnn: int


# Opcodes whose class is fully given by the top nibble
_BY_CLASS = {
    0x1: Op.JP,
    0x2: Op.CALL,
    0x3: Op.SE_BYTE,
    0x4: Op.SNE_BYTE,
    0x6: Op.LD_BYTE,
    0x7: Op.ADD_BYTE,
    0xA: Op.LD_I,
    0xB: Op.JP_V0,
    0xC: Op.RND,
    0xD: Op.DRW,
}

_ALU = {
    0x0: Op.LD_REG,
    0x1: Op.OR,
    0x2: Op.AND,
    0x3: Op.XOR,
    0x4: Op.ADD_REG,
    0x5: Op.SUB,
    0x6: Op.SHR,
    0x7: Op.SUBN,
    0xE: Op.SHL,
}

_KEYS = {
    0x9E: Op.SKP,
    0xA1: Op.SKNP,
}

_MISC = {
    0x07: Op.LD_VX_DT,
    0x0A: Op.LD_K,
    0x15: Op.LD_DT,
    0x18: Op.LD_ST,
    0x1E: Op.ADD_I,
    0x29: Op.LD_F,
    0x33: Op.LD_B,
    0x55: Op.LD_MEM,
    0x65: Op.LD_REGS,
}


def _classify(opcode: int) -> Op:
    first = opcode >> 12
    n = opcode & 0x000F
    kk = opcode & 0x00FF

    if first in _BY_CLASS:
        return _BY_CLASS[first]
    if opcode == 0x00E0:
        return Op.CLS
    if opcode == 0x00EE:
        return Op.RET
    if first == 0x5 and n == 0:
        return Op.SE_REG
    if first == 0x8 and n in _ALU:
        return _ALU[n]
    if first == 0x9 and n == 0:
        return Op.SNE_REG
    if first == 0xE and kk in _KEYS:
        return _KEYS[kk]
    if first == 0xF and kk in _MISC:
        return _MISC[kk]
    raise UnknownOpcodeError(opcode)


def decode(opcode: int) -> Instruction:
    """Decode a raw 16-bit word into an Instruction"""
    if not 0 <= opcode <= 0xFFFF:
        raise ValueError(f"Opcode out of 16-bit range: {opcode:#x}")

    return Instruction(
        op=_classify(opcode),
        opcode=opcode,
        x=(opcode >> 8) & 0x0F,
        y=(opcode >> 4) & 0x0F,
        n=opcode & 0x000F,
        kk=opcode & 0x00FF,
        nnn=opcode & 0x0FFF,
    )
