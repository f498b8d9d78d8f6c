"""
Part of dotnetinvoker

CIL bytecode decoder. Turns a method body into an ordered sequence of instructions without executing anything.
Opcode tables, operand reading and header parsing come from dncil (https://github.com/mandiant/dncil).

The following references were used:
    CLI specification (ECMA-335 standard), Partition II 25.4 (method headers) and Partition III (instruction set)
        https://www.ecma-international.org/publications/files/ECMA-ST/ECMA-335.pdf
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from dncil.cil.body import CilMethodBody
from dncil.cil.body.reader import CilMethodBodyReaderBase, CilMethodBodyReaderBytes
from dncil.cil.enums import OpCodeValue
from dncil.cil.error import MethodBodyFormatError
from dncil.cil.opcode import OpCode, OpCodes
from dncil.clr.argument import Argument
from dncil.clr.local import Local
from dncil.clr.token import Token, StringToken

from .logger import get_logger
from .errors import DecodeError
from .model import Struct
from .constants import USER_STRING_TOKEN_TABLE


TokenResolver = Callable[[int], Any]

FAT_HEADER_MIN_SIZE = 12

UNKNOWN_OPCODES = (OpCodeValue.UNKNOWN1, OpCodeValue.UNKNOWN2)

CIL_OPCODES = OpCodes()

logger = get_logger('decoder_logger', level=logging.INFO)


class CilMethodHeader(CilMethodBody):
    """
    Header part of a managed method body. Instructions and exception sections are left alone, they are
    decoded separately so that a damaged body still yields its valid prefix.
    """
    def __init__(self, reader: CilMethodBodyReaderBase):
        self.offset = reader.tell()
        self.parse_header(reader)


def get_opcode(value: int) -> Optional[OpCode]:
    if value >> 8 == 0:
        opcode = CIL_OPCODES.one_byte_op_codes[value]
    elif value >> 8 == 0xFE:
        opcode = CIL_OPCODES.two_byte_op_codes[value & 0xFF]
    else:
        return None

    return None if opcode.value in UNKNOWN_OPCODES else opcode


def parse_method_header(data: bytes) -> Struct.MethodHeader:
    try:
        header = CilMethodHeader(CilMethodBodyReaderBytes(bytes(data)))
    except MethodBodyFormatError as e:
        raise DecodeError(f'Invalid method header: {e}') from e

    if header.flags.is_tiny():
        return Struct.MethodHeader(is_fat=False, header_size=header.header_size, code_size=header.code_size)

    if header.header_size < FAT_HEADER_MIN_SIZE:
        raise DecodeError(f'Invalid fat method header size {header.header_size}')

    return Struct.MethodHeader(
        is_fat=True,
        header_size=header.header_size,
        code_size=header.code_size,
        max_stack=header.max_stack,
        flags=header.flags.value & 0x0FFF,
        local_var_sig_token=header.local_var_sig_tok.value if header.local_var_sig_tok else 0
    )


def read_method_body(data: bytes) -> Tuple[Struct.MethodHeader, bytes]:
    """
    Split raw method data into its header and the code bytes following it.
    """
    header = parse_method_header(data)
    code = data[header.header_size:header.header_size + header.code_size]
    if len(code) < header.code_size:
        raise DecodeError(f'Method code is truncated: expected {header.code_size} bytes, got {len(code)}')

    return header, code


def _resolve_operand(token: Token, resolver: Optional[TokenResolver]) -> Any:
    if isinstance(token, StringToken) and token.table != USER_STRING_TOKEN_TABLE:
        return Struct.UnresolvedToken(token.value)

    if resolver is None:
        return Struct.UnresolvedToken(token.value)

    # A single bad reference must not abort the rest of the method
    try:
        return resolver(token.value)
    except Exception as e:
        logger.debug(f'could not resolve token 0x{token.value:08x}: {e}')
        return Struct.UnresolvedToken(token.value)


def _convert_operand(operand: Any, resolver: Optional[TokenResolver]) -> Any:
    if isinstance(operand, Token):
        return _resolve_operand(operand, resolver)
    if isinstance(operand, (Argument, Local)):
        return operand.index
    if isinstance(operand, list):
        # Jump table is skipped, not interpreted
        return Struct.SwitchOperand(len(operand))

    return operand


def decode(body: bytes, resolver: Optional[TokenResolver] = None, strict: bool = False) -> Struct.DecodedMethodBody:
    """
    Decode the code bytes of a method body.

    :param body: code bytes without the method header
    :param resolver: callable mapping a metadata token to a string, member or type; failures become
                     Struct.UnresolvedToken for that instruction only
    :param strict: raise DecodeError on truncated trailing data instead of flagging the result as truncated
    """
    instructions: List[Struct.Instruction] = []
    body = bytes(body)
    reader = CilMethodBodyReaderBytes(body)
    truncated = False

    while reader.tell() < len(body):
        offset = reader.tell()
        try:
            instruction = reader.read_instruction(offset)
        except MethodBodyFormatError as e:
            truncated = True
            message = f'Method body is truncated at IL_{offset:04x} ({len(body)} bytes): {e}'
            if strict:
                raise DecodeError(message) from e
            logger.debug(message)
            break

        if instruction.opcode.value in UNKNOWN_OPCODES:
            logger.debug(f'unknown opcode {instruction.get_opcode_bytes().hex()} at IL_{offset:04x}')

        operand = _convert_operand(instruction.operand, resolver)
        instructions.append(Struct.Instruction(offset, instruction.opcode, operand, instruction.size))

    return Struct.DecodedMethodBody(tuple(instructions), truncated)
