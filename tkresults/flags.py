"""Common command-line options for listing and fetching results."""

from __future__ import annotations

import argparse
from dataclasses import dataclass

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


def _int32(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int32 value: {text!r}") from None
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise argparse.ArgumentTypeError(f"value out of int32 range: {text!r}")
    return value


@dataclass
class ListOptions:
    """Options of commands that list results, records or logs."""

    filter: str = ""
    limit: int = 0
    page_token: str = ""
    format: str = "tab"

    @classmethod
    def from_namespace(cls, namespace: argparse.Namespace) -> "ListOptions":
        return cls(
            filter=namespace.filter,
            limit=namespace.limit,
            page_token=namespace.page_token,
            format=namespace.format,
        )


@dataclass
class GetOptions:
    """Options of commands that fetch a single result, record or log."""

    format: str = "json"

    @classmethod
    def from_namespace(cls, namespace: argparse.Namespace) -> "GetOptions":
        return cls(format=namespace.format)


def add_list_flags(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Add the flags shared by list commands to ``parser`` and return it."""
    parser.add_argument("-f", "--filter", default="", help="CEL Filter")
    parser.add_argument(
        "-l",
        "--limit",
        type=_int32,
        default=0,
        help="number of items to return. Response may be truncated due to server limits.",
    )
    parser.add_argument(
        "-p", "--page", dest="page_token", default="", help="pagination token to use for next page"
    )
    parser.add_argument(
        "-o",
        "--output",
        dest="format",
        default="tab",
        help="output format. Valid values: tab|textproto|json",
    )
    return parser


def add_get_flags(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Add the flags shared by get commands to ``parser`` and return it."""
    parser.add_argument(
        "-o",
        "--output",
        dest="format",
        default="json",
        help="output format. Valid values: textproto|json",
    )
    return parser