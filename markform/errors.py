#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Markform error hierarchy.

ParseError covers malformed source syntax; ValidationError covers
well-formed markup that breaks form semantics. Both are fatal while
parsing and carry an optional source location.
"""

from typing import Any, Dict, Optional


class MarkformError(Exception):
    """Base error for the Markform engine"""
    pass


class _LocatedError(MarkformError):
    """Error with an optional line/column/field/note location"""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        field_id: Optional[str] = None,
        note_id: Optional[str] = None,
    ):
        self.message = message
        self.line = line
        self.column = column
        self.field_id = field_id
        self.note_id = note_id
        super().__init__(self._format())

    @property
    def location(self) -> Dict[str, Any]:
        """Location as a dict, omitting unknown parts"""
        data = {
            "line": self.line,
            "column": self.column,
            "field_id": self.field_id,
            "note_id": self.note_id,
        }
        return {k: v for k, v in data.items() if v is not None}

    def _format(self) -> str:
        if self.line is None:
            return self.message
        if self.column is None:
            return f"{self.message} (line {self.line})"
        return f"{self.message} (line {self.line}, column {self.column})"


class ParseError(_LocatedError):
    """Raised when document syntax is malformed"""
    pass


class ValidationError(_LocatedError):
    """Raised when well-formed markup violates form semantics"""
    pass


class HarnessConfigError(MarkformError):
    """Raised for invalid harness options"""
    pass
