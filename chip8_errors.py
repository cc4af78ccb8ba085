"""
CHIP-8 error types.

Two families: faults raised by the program being emulated (fatal, the VM
cannot continue faithfully) and bad input handed to the VM by its host.
"""


class Chip8Error(Exception):
    pass


# ==================== PROGRAM FAULTS ====================

class MalformedProgramError(Chip8Error):
    """The running program did something the VM cannot emulate"""


class UnknownOpcodeError(MalformedProgramError):
    def __init__(self, opcode: int):
        super().__init__(f"Unimplemented opcode {opcode:#06x}")
        self.opcode = opcode


class StackUnderflowError(MalformedProgramError):
    pass


class MemoryAccessError(MalformedProgramError):
    pass


class KeyIndexError(MalformedProgramError):
    pass


# ==================== HOST INPUT ====================

class HostInputError(Chip8Error, ValueError):
    """The host passed something outside the VM's input contract"""


class ProgramTooLargeError(HostInputError):
    pass


class InvalidKeyError(HostInputError):
    pass
