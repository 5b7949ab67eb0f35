"""
Command-line parsing.

    pygpasswd [-r|-R] group
    pygpasswd [-a user] group
    pygpasswd [-d user] group
    pygpasswd [-A user,...] [-M user,...] group
    pygpasswd group                        (change the group password)

-a, -d, -r, -R and the -A/-M pair are mutually exclusive. -g is accepted
and ignored.
"""

import argparse
from typing import List, Optional

from execution.context import MutationKind, MutationRequest
from transactions.errors import UsageError

USAGE = """\
Usage: {prog} [-r|-R] group
       {prog} [-a user] group
       {prog} [-d user] group
       {prog} [-A user,...] [-M user,...] group"""


class _ArgumentParser(argparse.ArgumentParser):
    """argparse that raises instead of exiting."""

    def error(self, message):
        raise UsageError(message)


def build_parser(prog: str) -> argparse.ArgumentParser:
    parser = _ArgumentParser(prog=prog, add_help=False)
    parser.add_argument("-a", dest="add", metavar="user")
    parser.add_argument("-d", dest="delete", metavar="user")
    parser.add_argument("-r", dest="remove_password", action="store_true")
    parser.add_argument("-R", dest="restrict", action="store_true")
    parser.add_argument("-A", dest="admins", metavar="user,...")
    parser.add_argument("-M", dest="members", metavar="user,...")
    parser.add_argument("-g", dest="noop", action="store_true")
    parser.add_argument("group", nargs="*")
    return parser


def parse_args(argv: List[str], prog: str = "pygpasswd") -> MutationRequest:
    """Turn argv (without the program name) into a MutationRequest."""
    args = build_parser(prog).parse_args(argv)

    selected = []
    if args.add is not None:
        selected.append(MutationKind.ADD_MEMBER)
    if args.delete is not None:
        selected.append(MutationKind.REMOVE_MEMBER)
    if args.remove_password:
        selected.append(MutationKind.CLEAR_PASSWORD)
    if args.restrict:
        selected.append(MutationKind.RESTRICT)
    if args.admins is not None or args.members is not None:
        selected.append(MutationKind.REPLACE_LISTS)

    if len(selected) > 1:
        raise UsageError("options are mutually exclusive")
    if len(args.group) != 1 or not args.group[0]:
        raise UsageError("exactly one group name is required")

    kind = selected[0] if selected else MutationKind.CHANGE_PASSWORD
    user: Optional[str] = args.add if args.add is not None else args.delete
    return MutationRequest(
        group=args.group[0],
        kind=kind,
        user=user,
        members=args.members,
        admins=args.admins,
    )


def usage_text(prog: str) -> str:
    return USAGE.format(prog=prog)
