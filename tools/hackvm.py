#!/usr/bin/env python3
r"""
hackvm.py  –  VM translator for the Hack platform
==================================================

Usage:
    python3 hackvm.py input.vm [input2.vm ...] [-o output.asm]
                               [--annotate] [-q]

Output:
    Hack assembly file (.asm)   one per input, written beside it unless -o

Supported VM commands:
    Arithmetic      add  sub  neg  and  or  not
    Comparison      eq   gt   lt        (true = -1, false = 0)
    Memory access   push SEGMENT INDEX  |  pop SEGMENT INDEX

Segments:
    local argument this that   base pointer in LCL/ARG/THIS/THAT, + index
    constant                   literal index (push only)
    temp                       RAM[5 + index]
    pointer                    RAM[3 + index]   (0 = THIS, 1 = THAT)
    static                     symbol <File>.<index>, one namespace per file

Comments:
    // to end of line
"""

import os
import sys
import argparse
import threading
from enum import Enum
from collections import namedtuple

# ── Command tables ────────────────────────────────────────────────────────────

class Op(Enum):
    ADD = 'add'
    SUB = 'sub'
    NEG = 'neg'
    EQ  = 'eq'
    GT  = 'gt'
    LT  = 'lt'
    AND = 'and'
    OR  = 'or'
    NOT = 'not'


class Segment(Enum):
    CONSTANT = 'constant'
    LOCAL    = 'local'
    ARGUMENT = 'argument'
    THIS     = 'this'
    THAT     = 'that'
    TEMP     = 'temp'
    POINTER  = 'pointer'
    STATIC   = 'static'


class Direction(Enum):
    PUSH = 'push'
    POP  = 'pop'


# Segments addressed through a base pointer held in a fixed RAM cell
SEGMENT_BASES = {
    Segment.LOCAL:    'LCL',
    Segment.ARGUMENT: 'ARG',
    Segment.THIS:     'THIS',
    Segment.THAT:     'THAT',
}

TEMP_BASE    = 5
POINTER_BASE = 3
SCRATCH      = 'R13'

# Conventional sizes; out-of-range indices are translated anyway (with a warning)
TEMP_SIZE    = 8
POINTER_SIZE = 2
MAX_CONSTANT = 0x7FFF   # largest value an A-instruction can load

ARITHMETIC_COMMANDS = {op.value for op in Op}
MEMORY_COMMANDS     = {d.value for d in Direction}

# Binary ops: combine D (top) with M (one below top); result replaces M
BINARY_OPS = {
    Op.ADD: 'M=D+M',
    Op.SUB: 'M=M-D',
    Op.AND: 'M=D&M',
    Op.OR:  'M=D|M',
}

# Unary ops work in place on the top cell
UNARY_OPS = {
    Op.NEG: 'M=-M',
    Op.NOT: 'M=!M',
}

COMPARE_JUMPS = {
    Op.EQ: 'D;JEQ',
    Op.GT: 'D;JGT',
    Op.LT: 'D;JLT',
}

# ── Error / warning helpers ───────────────────────────────────────────────────

class VMError(Exception):
    def __init__(self, msg, filename=None, lineno=None):
        super().__init__(msg)
        self.msg      = msg
        self.filename = filename
        self.lineno   = lineno
    def __str__(self):
        loc = ''
        if self.filename:
            loc = f'{self.filename}'
        if self.lineno is not None:
            loc += f':{self.lineno}'
        return f'Error ({loc}): {self.msg}' if loc else f'Error: {self.msg}'

warnings_issued = []

def warn(msg, filename=None, lineno=None):
    loc = ''
    if filename:
        loc = f'{filename}'
    if lineno is not None:
        loc += f':{lineno}'
    w = f'Warning ({loc}): {msg}' if loc else f'Warning: {msg}'
    warnings_issued.append(w)
    print(w, file=sys.stderr)

# ── Label allocator ───────────────────────────────────────────────────────────

class LabelAllocator:
    """
    Counter behind the TRUE$n / END$n label pairs emitted for comparisons.

    The counter only ever grows between explicit reset() calls, and next()
    is serialised with a lock, so runs sharing one instance (interleaved or
    on other threads) never hand out the same number twice.  Numbers are then
    not contiguous per run.  reset() is the owner's call: only reset an
    instance no other run is still using.
    """

    def __init__(self):
        self._value = 0
        self._lock  = threading.Lock()

    @property
    def value(self):
        return self._value

    def reset(self):
        with self._lock:
            self._value = 0

    def next(self):
        with self._lock:
            self._value += 1
            return self._value

# ── Arithmetic translator ─────────────────────────────────────────────────────

# SP is decremented; top value in D, A points at the one-from-top cell
COMBINE_TOP_TWO = ['@SP', 'AM=M-1', 'D=M', 'A=A-1']

# A points at the top cell; SP unchanged
TOP_VALUE = ['@SP', 'A=M-1']

def _compare(op, labels):
    n          = labels.next()
    true_label = f'TRUE${n}'
    end_label  = f'END${n}'
    return [
        *COMBINE_TOP_TWO,
        'D=M-D',
        f'@{true_label}',
        COMPARE_JUMPS[op],
        # false
        *TOP_VALUE,
        'M=0',
        f'@{end_label}',
        '0;JMP',
        # true
        f'({true_label})',
        *TOP_VALUE,
        'M=-1',
        f'({end_label})',
    ]

def arithmetic(op, labels):
    """Return the assembly lines for one arithmetic/logic/comparison command."""
    op = Op(op)
    if op in BINARY_OPS:
        return COMBINE_TOP_TWO + [BINARY_OPS[op]]
    if op in UNARY_OPS:
        return TOP_VALUE + [UNARY_OPS[op]]
    if op in COMPARE_JUMPS:
        return _compare(op, labels)
    raise ValueError(f"Internal: no translation for '{op.value}'")

# ── Memory-access translator ──────────────────────────────────────────────────

# Store D on top of the stack, then SP++
PUSH_D = ['@SP', 'A=M', 'M=D', '@SP', 'M=M+1']

# SP--, then D = the old top value
POP_D = ['@SP', 'AM=M-1', 'D=M']

def _static_symbol(index, unit):
    if not unit:
        raise ValueError('static segment requires a source unit name')
    return f'{unit}.{index}'

def _check_index(index):
    if not isinstance(index, int) or isinstance(index, bool) or index < 0:
        raise ValueError(f'index must be a non-negative integer, got {index!r}')

def push(segment, index, unit=None):
    """Return the lines that push SEGMENT[index] onto the stack."""
    segment = Segment(segment)
    _check_index(index)

    if segment is Segment.CONSTANT:
        load = [f'@{index}', 'D=A']
    elif segment in SEGMENT_BASES:
        load = [f'@{index}', 'D=A',
                f'@{SEGMENT_BASES[segment]}', 'A=D+M', 'D=M']
    elif segment is Segment.TEMP:
        load = [f'@{TEMP_BASE + index}', 'D=M']
    elif segment is Segment.POINTER:
        load = [f'@{POINTER_BASE + index}', 'D=M']
    elif segment is Segment.STATIC:
        load = [f'@{_static_symbol(index, unit)}', 'D=M']
    else:
        raise ValueError(f"Internal: unknown segment '{segment.value}'")

    return load + PUSH_D

def pop(segment, index, unit=None):
    """Return the lines that pop the stack top into SEGMENT[index]."""
    segment = Segment(segment)
    _check_index(index)

    if segment is Segment.CONSTANT:
        raise ValueError('cannot pop to the constant segment')
    if segment in SEGMENT_BASES:
        # Target address is parked in the scratch cell before POP_D reuses D
        return [
            f'@{index}', 'D=A',
            f'@{SEGMENT_BASES[segment]}', 'D=D+M',
            f'@{SCRATCH}', 'M=D',
            *POP_D,
            f'@{SCRATCH}', 'A=M', 'M=D',
        ]
    if segment is Segment.TEMP:
        target = TEMP_BASE + index
    elif segment is Segment.POINTER:
        target = POINTER_BASE + index
    elif segment is Segment.STATIC:
        target = _static_symbol(index, unit)
    else:
        raise ValueError(f"Internal: unknown segment '{segment.value}'")

    return POP_D + [f'@{target}', 'M=D']

def memory_access(direction, segment, index, unit=None):
    direction = Direction(direction)
    if direction is Direction.PUSH:
        return push(segment, index, unit)
    if direction is Direction.POP:
        return pop(segment, index, unit)
    raise ValueError(f"Internal: unknown memory command '{direction.value}'")

# ── Line classifier ───────────────────────────────────────────────────────────

Instruction = namedtuple('Instruction', 'command segment index')

def strip_comment(line):
    """Remove // comments."""
    i = line.find('//')
    return line if i < 0 else line[:i]

def is_ignored(line):
    return not strip_comment(line).strip()

def parse_index(tok, filename=None, lineno=None):
    """Parse a segment index: decimal digits only, so never negative."""
    if not (tok.isascii() and tok.isdigit()):
        raise VMError(f"Index must be a non-negative integer, got '{tok}'",
                      filename, lineno)
    return int(tok)

def parse_line(line, filename=None, lineno=None):
    """
    Split one VM source line into an Instruction.

    Returns None for blank and comment-only lines.  Everything the
    translators cannot handle is rejected here with a VMError, so the
    ValueErrors they raise only ever signal a caller bug.
    """
    if is_ignored(line):
        return None

    tokens = strip_comment(line).split()
    command, args = tokens[0], tokens[1:]

    if command in ARITHMETIC_COMMANDS:
        if args:
            raise VMError(f"'{command}' takes no operands, got {len(args)}",
                          filename, lineno)
        return Instruction(Op(command), None, None)

    if command in MEMORY_COMMANDS:
        if len(args) != 2:
            raise VMError(f"'{command}' expects a segment and an index",
                          filename, lineno)
        direction = Direction(command)
        seg_tok, idx_tok = args
        try:
            segment = Segment(seg_tok)
        except ValueError:
            raise VMError(f"Unknown segment '{seg_tok}'", filename, lineno)
        index = parse_index(idx_tok, filename, lineno)
        if direction is Direction.POP and segment is Segment.CONSTANT:
            raise VMError("Cannot pop to the constant segment", filename, lineno)
        _range_warnings(segment, index, filename, lineno)
        return Instruction(direction, segment, index)

    raise VMError(f"Unknown command '{command}'", filename, lineno)

def _range_warnings(segment, index, filename, lineno):
    if segment is Segment.TEMP and index >= TEMP_SIZE:
        warn(f"temp {index} is outside temp 0..{TEMP_SIZE - 1}", filename, lineno)
    elif segment is Segment.POINTER and index >= POINTER_SIZE:
        warn(f"pointer {index} is outside pointer 0..{POINTER_SIZE - 1}",
             filename, lineno)
    elif segment is Segment.CONSTANT and index > MAX_CONSTANT:
        warn(f"constant {index} does not fit in 15 bits", filename, lineno)

def translate_line(line, unit, labels, filename=None, lineno=None):
    """Translate one source line; blank/comment lines give an empty list."""
    ins = parse_line(line, filename, lineno)
    if ins is None:
        return []
    if isinstance(ins.command, Direction):
        return memory_access(ins.command, ins.segment, ins.index, unit)
    return arithmetic(ins.command, labels)

# ── Driver ────────────────────────────────────────────────────────────────────

def unit_name(path):
    """Source unit name used for static symbols: 'dir/Foo.vm' -> 'Foo'."""
    return os.path.splitext(os.path.basename(path))[0]

def translate_lines(lines, unit, labels=None, annotate=False, filename=None,
                    reset=False):
    """
    Translate a whole source unit.

    Without an allocator the unit gets a fresh one, so translating the same
    unit twice gives identical output.  A caller-supplied allocator is only
    reset when reset=True; otherwise numbering carries on from where it is,
    which keeps labels unique when several runs share it.  With
    annotate=True every instruction group is preceded by the source line as
    a // comment.
    """
    if labels is None:
        labels = LabelAllocator()
    elif reset:
        labels.reset()

    out = []
    for lineno, raw in enumerate(lines, 1):
        group = translate_line(raw, unit, labels, filename, lineno)
        if group and annotate:
            out.append(f'// {strip_comment(raw).strip()}')
        out.extend(group)
    return out

def translate_file(path, labels=None, annotate=False, reset=False):
    try:
        with open(path, 'r', encoding='utf-8') as fh:
            raw_lines = fh.read().splitlines()
    except OSError as e:
        raise VMError(f"Cannot open '{path}': {e}")
    except UnicodeDecodeError as e:
        raise VMError(f"Cannot decode '{path}' as UTF-8: {e}")
    return translate_lines(raw_lines, unit_name(path), labels,
                           annotate=annotate, filename=path, reset=reset)

def write_asm(lines, out_path):
    """Write one assembly instruction per line."""
    with open(out_path, 'w') as fh:
        for line in lines:
            fh.write(line + '\n')

# ── Main ──────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Hack VM translator (arithmetic and memory access)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__)
    parser.add_argument('inputs', nargs='+', metavar='input',
                        help='VM source file(s)')
    parser.add_argument('-o', '--output',
                        help='Output file (single input only; default: <input>.asm)')
    parser.add_argument('--annotate', action='store_true',
                        help='Emit each VM command as a comment above its code')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Do not report written files')
    args = parser.parse_args(argv)

    if args.output and len(args.inputs) > 1:
        parser.error('-o/--output can only be used with a single input file')

    # Files are translated one after another, so each can restart at 1
    labels = LabelAllocator()
    try:
        for path in args.inputs:
            lines    = translate_file(path, labels, annotate=args.annotate,
                                      reset=True)
            out_path = args.output or (os.path.splitext(path)[0] + '.asm')
            write_asm(lines, out_path)
            if not args.quiet:
                print(f'Wrote {len(lines)} lines to {out_path}')

        if warnings_issued:
            print(f'{len(warnings_issued)} warning(s).', file=sys.stderr)

    except VMError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(f'Error: {e}', file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
