from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, List


class ScriptError(Exception):
    """Base class for script engine errors."""


class ScriptParseError(ScriptError):
    """Raised when parsing fails."""

    def __init__(self, messages: List[str]) -> None:
        super().__init__("\n".join(messages))
        self.messages = list(messages)


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int
    line_text: str


TOKEN_IDENT = "IDENT"
TOKEN_INTEGER = "INTEGER"
TOKEN_FLOAT = "FLOAT"
TOKEN_STRING = "STRING"
TOKEN_COLON = "COLON"
TOKEN_BANG = "BANG"
TOKEN_NEWLINE = "NEWLINE"
TOKEN_COMMENT = "COMMENT"
TOKEN_EOF = "EOF"
TOKEN_ILLEGAL = "ILLEGAL"

DELIMITERS: Dict[str, str] = {
    ":": TOKEN_COLON,
    "!": TOKEN_BANG,
}

LINE_COMMENT = "//"
BLOCK_COMMENT_START = "/*"
BLOCK_COMMENT_END = "*/"

QUOTES = ('"', "'")

ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "\\": "\\",
    '"': '"',
    "'": "'",
}


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.lines = [line.rstrip("\r") for line in text.split("\n")]
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        return list(self.tokens())

    def tokens(self) -> Iterator[Token]:
        text = self.text
        n = len(text)
        _advance = self._advance

        while self.index < n:
            ch: str = text[self.index]
            if ch == "\n":
                yield self._token(TOKEN_NEWLINE, "\n")
                _advance()
                continue
            if ch.isspace():
                _advance()
                continue
            if text.startswith(LINE_COMMENT, self.index):
                yield self._consume_line_comment()
                continue
            if text.startswith(BLOCK_COMMENT_START, self.index):
                yield self._consume_block_comment()
                continue
            if text.startswith(BLOCK_COMMENT_END, self.index):
                token = self._token(TOKEN_ILLEGAL, BLOCK_COMMENT_END)
                _advance()
                _advance()
                yield token
                continue
            if ch in DELIMITERS:
                yield self._token(DELIMITERS[ch], ch)
                _advance()
                continue
            if ch in QUOTES:
                yield self._consume_string()
                continue
            if self._starts_number():
                yield self._consume_number()
                continue
            yield self._consume_identifier()
        yield self._token(TOKEN_EOF, "")

    def _consume_line_comment(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] not in "\r\n":
            self._advance()
        return Token(TOKEN_COMMENT, text[start:self.index], line, col, self._line_text(line))

    def _consume_block_comment(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        self._advance()
        self._advance()
        end = self.text.find(BLOCK_COMMENT_END, self.index)
        if end == -1:
            # Unterminated: swallow the rest and report at end-of-stream.
            while not self._eof:
                self._advance()
            return self._token(TOKEN_ILLEGAL, self.text[start:start + 2])
        while self.index < end + len(BLOCK_COMMENT_END):
            self._advance()
        return Token(TOKEN_COMMENT, self.text[start:self.index], line, col, self._line_text(line))

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        opening = self._peek()
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == opening:
                self._advance()
                return Token(TOKEN_STRING, "".join(chars), line, col, self._line_text(line))
            if ch in "\r\n":
                break
            if ch == "\\":
                self._advance()
                if self._eof:
                    break
                escaped = self._peek()
                chars.append(ESCAPES.get(escaped, escaped))
                self._advance()
                continue
            chars.append(ch)
            self._advance()
        return Token(TOKEN_ILLEGAL, opening + "".join(chars), line, col, self._line_text(line))

    def _starts_number(self) -> bool:
        text = self.text
        i = self.index
        if text[i] in "+-":
            i += 1
        return i < len(text) and text[i].isdigit()

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        token_type = TOKEN_INTEGER
        if self._peek() in "+-":
            self._advance()
        self._consume_digits()
        if not self._eof and self._peek() == "." and self._digit_at(self.index + 1):
            self._advance()  # consume '.'
            self._consume_digits()
            token_type = TOKEN_FLOAT
        if not self._eof and self._peek() in "eE":
            j = self.index + 1
            if j < len(self.text) and self.text[j] in "+-":
                j += 1
            if self._digit_at(j):
                while self.index < j:
                    self._advance()
                self._consume_digits()
                token_type = TOKEN_FLOAT
        if not self._eof and self._is_identifier_part(self._peek()):
            # Something like "12abc": one malformed token, not two.
            while not self._eof and self._is_identifier_part(self._peek()):
                self._advance()
            token_type = TOKEN_ILLEGAL
        return Token(token_type, self.text[start:self.index], line, col, self._line_text(line))

    def _consume_digits(self) -> None:
        while not self._eof and self._peek().isdigit():
            self._advance()

    def _digit_at(self, index: int) -> bool:
        return index < len(self.text) and self.text[index].isdigit()

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        while not self._eof and self._is_identifier_part(self._peek()):
            self._advance()
        return Token(TOKEN_IDENT, self.text[start:self.index], line, col, self._line_text(line))

    def _is_identifier_part(self, ch: str) -> bool:
        if ch.isspace() or ch in DELIMITERS or ch in QUOTES:
            return False
        if ch == "/" and self.text.startswith((LINE_COMMENT, BLOCK_COMMENT_START), self.index):
            return False
        return True

    def _token(self, token_type: str, value: str) -> Token:
        return Token(token_type, value, self.line, self.column, self._line_text(self.line))

    def _line_text(self, line: int) -> str:
        if 0 < line <= len(self.lines):
            return self.lines[line - 1]
        return ""

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
