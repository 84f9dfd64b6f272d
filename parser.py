"""Reads script tokens into a validated Program.

The reader is a small state machine::

    START --':'--> LABEL --ident--> LABEL_END --EOL--> START
    START --'!'--> METADATA --key ':' value EOL--> START
    START --ident--> COMMAND --args... EOL--> START

Diagnostics are collected in a list and raised together as one
ScriptParseError once the scan stops. Argument type mismatches do not stop
the scan; structural mistakes do, because the tokens that follow them
cannot be interpreted.
"""

from __future__ import annotations
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from descriptors import CommandDescriptor, CommandEntry
from lexer import (
    TOKEN_BANG,
    TOKEN_COLON,
    TOKEN_COMMENT,
    TOKEN_EOF,
    TOKEN_FLOAT,
    TOKEN_IDENT,
    TOKEN_ILLEGAL,
    TOKEN_INTEGER,
    TOKEN_NEWLINE,
    TOKEN_STRING,
    Lexer,
    ScriptParseError,
    Token,
)
from program import IDENTIFIER, INTEGER, NUMBER, STRING, Argument, Command, Program


STATE_START = "START"
STATE_LABEL = "LABEL"
STATE_LABEL_END = "LABEL_END"
STATE_COMMAND = "COMMAND"
STATE_METADATA = "METADATA"

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

NUMERIC_TOKENS = (TOKEN_INTEGER, TOKEN_FLOAT)
END_OF_LINE = (TOKEN_NEWLINE, TOKEN_EOF)


def parse_long(lexeme: str) -> Optional[int]:
    """Parse a base-10 signed 64-bit integer, or return None."""
    try:
        value = int(lexeme, 10)
    except ValueError:
        return None
    if INT64_MIN <= value <= INT64_MAX:
        return value
    return None


class Parser:
    def __init__(
        self,
        tokens: Iterable[Token],
        filename: str = "<string>",
        descriptors: Sequence[CommandDescriptor] = (),
    ) -> None:
        self._tokens: Iterator[Token] = iter(tokens)
        self.filename = filename
        self.descriptors = tuple(descriptors)
        self.program = Program(name=filename)
        self.errors: List[str] = []
        self.state = STATE_START
        self.current_index = 0
        self._token: Optional[Token] = None
        self._command_token: Optional[Token] = None
        self._command_entry: Optional[CommandEntry] = None
        self._arguments: List[Argument] = []

    def parse(self) -> Program:
        handlers: Dict[str, Callable[[], bool]] = {
            STATE_START: self._state_start,
            STATE_LABEL: self._state_label,
            STATE_LABEL_END: self._state_label_end,
            STATE_COMMAND: self._state_command,
            STATE_METADATA: self._state_metadata,
        }
        self._advance()
        while not (self.state == STATE_START and self._peek().type == TOKEN_EOF):
            if not handlers[self.state]():
                break
        if self.errors:
            raise ScriptParseError(self.errors)
        return self.program

    # ---- states ----
    def _state_start(self) -> bool:
        token = self._peek()
        if self._match(TOKEN_COLON):
            self.state = STATE_LABEL
            return True
        if self._match(TOKEN_BANG):
            self.state = STATE_METADATA
            return True
        if self._match(TOKEN_NEWLINE):
            return True
        if token.type == TOKEN_IDENT:
            return self._begin_command(token)
        if token.type == TOKEN_ILLEGAL:
            return self._error(self._illegal_message(token), token)
        return self._error("Expected command or label declaration.", token)

    def _begin_command(self, token: Token) -> bool:
        self._command_token = token
        self._command_entry = None
        self._arguments = []
        if self.descriptors:
            entry = self._find_entry(token.value)
            if entry is None:
                return self._error(f"Expected valid command, found '{token.value}'.", token)
            self._command_entry = entry
        self.state = STATE_COMMAND
        self._advance()
        return True

    def _state_label(self) -> bool:
        token = self._peek()
        if token.type == TOKEN_IDENT:
            self.program.set_label(token.value, self.current_index)
            self.state = STATE_LABEL_END
            self._advance()
            return True
        return self._error("Expected identifier type for label declaration.", token)

    def _state_label_end(self) -> bool:
        token = self._peek()
        if token.type in END_OF_LINE:
            self._match(TOKEN_NEWLINE)
            self.state = STATE_START
            return True
        return self._error("Expected end-of-line after label.", token)

    def _state_command(self) -> bool:
        token = self._peek()
        if token.type in NUMERIC_TOKENS:
            self._check_argument(token)
            kind = INTEGER if parse_long(token.value) is not None else NUMBER
            self._arguments.append(Argument(token.value, kind))
            self._advance()
            return True
        if token.type == TOKEN_STRING:
            self._check_argument(token)
            self._arguments.append(Argument(token.value, STRING))
            self._advance()
            return True
        if token.type == TOKEN_IDENT:
            self._check_argument(token)
            self._arguments.append(Argument(token.value, IDENTIFIER))
            self._advance()
            return True
        if token.type in END_OF_LINE:
            return self._end_command(token)
        if token.type == TOKEN_ILLEGAL:
            return self._error(self._illegal_message(token), token)
        return self._error("Expected valid argument token.", token)

    def _end_command(self, token: Token) -> bool:
        command_token = self._command_token
        assert command_token is not None
        entry = self._command_entry
        if entry is not None and not entry.accepts_count(len(self._arguments)):
            return self._error(
                f"Expected {entry.describe_count()} arguments for command '{command_token.value}'.",
                command_token,
            )
        self.program.add_command(
            Command(
                name=command_token.value,
                arguments=tuple(self._arguments),
                line=command_token.line_text,
                line_number=command_token.line,
            )
        )
        self.current_index += 1
        self.state = STATE_START
        self._match(TOKEN_NEWLINE)
        return True

    def _state_metadata(self) -> bool:
        key = self._peek()
        if key.type != TOKEN_IDENT:
            return self._error("Expected identifier for key.", key)
        self._advance()

        if not self._match(TOKEN_COLON):
            return self._error("Expected ':' after key.", self._peek())

        value = self._peek()
        if value.type not in (TOKEN_IDENT, TOKEN_STRING, TOKEN_INTEGER, TOKEN_FLOAT):
            return self._error("Expected identifier, string, or numeric value.", value)
        self._advance()

        end = self._peek()
        if end.type not in END_OF_LINE:
            return self._error("Expected end-of-line.", end)
        self._match(TOKEN_NEWLINE)

        self.program.set_metadata(key.value, value.value)
        self.state = STATE_START
        return True

    # ---- validation ----
    def _find_entry(self, name: str) -> Optional[CommandEntry]:
        for descriptor in self.descriptors:
            entry = descriptor.get_command_entry(name)
            if entry is not None:
                return entry
        return None

    def _check_argument(self, token: Token) -> None:
        entry = self._command_entry
        if entry is None:
            return
        expected = entry.type_at(len(self._arguments))
        if expected is None:
            return
        command = self._command_token.value if self._command_token else "?"
        numeric = token.type in NUMERIC_TOKENS
        if expected == INTEGER:
            if not numeric or parse_long(token.value) is None:
                self._add_error(f"Expected integer numeric argument for command '{command}'.", token)
        elif expected == NUMBER:
            if not numeric:
                self._add_error(f"Expected numeric argument for command '{command}'.", token)
        elif expected == IDENTIFIER:
            if token.type != TOKEN_IDENT:
                self._add_error(f"Expected identifier argument for command '{command}'.", token)
        elif expected == STRING:
            if token.type != TOKEN_STRING:
                self._add_error(f"Expected string argument for command '{command}'.", token)

    def _illegal_message(self, token: Token) -> str:
        value = token.value
        if value.startswith("/*"):
            return "Unterminated block comment."
        if value == "*/":
            return "Unexpected end of block comment."
        if value[:1] in ('"', "'"):
            return "Unterminated string literal."
        return f"Illegal token '{value}'."

    # ---- token helpers ----
    def _add_error(self, message: str, token: Token) -> None:
        self.errors.append(f"{message} at {self.filename}:{token.line}")

    def _error(self, message: str, token: Token) -> bool:
        self._add_error(message, token)
        return False

    def _peek(self) -> Token:
        assert self._token is not None
        return self._token

    def _advance(self) -> None:
        if self._token is not None and self._token.type == TOKEN_EOF:
            return
        for token in self._tokens:
            if token.type != TOKEN_COMMENT:
                self._token = token
                return
        # Iterator ran dry without an EOF token.
        line = self._token.line if self._token else 1
        self._token = Token(TOKEN_EOF, "", line, 1, "")

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self._advance()
            return True
        return False


def read_program(
    text: str,
    filename: str = "<string>",
    descriptors: Sequence[CommandDescriptor] = (),
) -> Program:
    lexer = Lexer(text, filename)
    return Parser(lexer.tokens(), filename, descriptors).parse()


def read_program_file(path: str, descriptors: Sequence[CommandDescriptor] = ()) -> Program:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except UnicodeDecodeError as exc:
        raise ScriptParseError([f"Script is not valid UTF-8 ({exc.reason}) at {path}"]) from exc
    return read_program(text, path, descriptors)
