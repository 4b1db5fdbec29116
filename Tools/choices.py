# choices.py - HZREFRESH Choice Resolver
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Numbered-menu selection, yes/no confirmation and pacing prompts

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import rpfunctions as rpf
from Tools.errors import NoCandidatesError


@dataclass(frozen=True)
class Candidate:
    """A named remote object offered to the operator"""
    id: str
    label: str
    detail: str = ''
    ref: Any = field(default=None, compare=False, repr=False)


def resolve(candidates: Sequence[Candidate], category: str,
            label: Optional[Callable[[Candidate], str]] = None,
            prompt: Optional[str] = None,
            ask=None, write_output=None) -> Candidate:
    """
    Return the operator's choice among candidates.

    A single candidate is selected without prompting. More than one
    renders a 1..N menu and re-prompts until the answer is in range.

    :param candidates: Ordered candidates fetched for this step
    :param category: Plural noun used in messages ('desktop pools')
    :param label: Produces the menu text for a candidate (defaults to its label)
    :param prompt: Menu question
    :raises NoCandidatesError: when candidates is empty
    """
    ask = ask or rpf.ask
    write_output = write_output or rpf.write_output
    label = label or (lambda c: c.label)

    if not candidates:
        raise NoCandidatesError(category)

    if len(candidates) == 1:
        write_output(f'Only one of {category} found, using {label(candidates[0])}')
        return candidates[0]

    write_output(f'Available {category}:')
    for index, candidate in enumerate(candidates, start=1):
        write_output(f'  {index}. {label(candidate)}')

    question = prompt or f'Select one of {category} [1-{len(candidates)}]:'
    while True:
        answer = ask(question)
        if answer.isdigit() and 1 <= int(answer) <= len(candidates):
            choice = candidates[int(answer) - 1]
            write_output(f'Selected {label(choice)}')
            return choice
        write_output(f'Please enter a number between 1 and {len(candidates)}')


def confirm(question: str, ask=None, write_output=None) -> bool:
    """Ask a Y/N question until the operator answers one or the other"""
    ask = ask or rpf.ask
    write_output = write_output or rpf.write_output
    while True:
        answer = ask(f'{question} (Y/N)').lower()
        if answer in ('y', 'yes'):
            return True
        if answer in ('n', 'no'):
            return False
        write_output('Please answer Y or N')


def pause(message: str, ask=None):
    """Block until the operator presses Enter"""
    ask = ask or rpf.ask
    ask(f'{message} - press Enter to continue')
