#!/usr/bin/env python3
"""
Name: rev
Description: reverse lines of a file
Author: Andy Murren, andy@murren.org (Original Perl Author)
License: gpl
"""

import sys
import os
import argparse
import signal
import errno
import threading
from collections import namedtuple
from contextlib import contextmanager
from enum import Enum

__version__ = '1.6'

EX_SUCCESS = 0
EX_FAILURE = 1

# Cancellation is polled once per block of this many code points while a
# single line is reversed, and once per this many words in separate mode.
POLL_STRIDE = 1000
WORD_POLL_STRIDE = 100

Line = namedtuple('Line', ['number', 'text'])


class ReversalPolicy(Enum):
    WHOLE_LINE = 'whole-line'
    PER_WORD = 'per-word'

    @classmethod
    def from_separate(cls, separate: bool) -> 'ReversalPolicy':
        """Maps the -s/--separate flag onto a policy."""
        return cls.PER_WORD if separate else cls.WHOLE_LINE


class CancelToken:
    """
    A one-shot cancellation flag shared by the line loop and the reversal loop.

    Once cancelled it stays cancelled; the first reason given is kept. Any
    object with an is_cancelled() method can stand in for it.

    `waiting` is true while the line source is blocked reading input.
    """
    def __init__(self):
        self._event = threading.Event()
        self.reason = None
        self.waiting = False

    def cancel(self, reason='cancelled'):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


class _NeverCancelled:
    def is_cancelled(self):
        return False


NEVER = _NeverCancelled()


# --- Errors ---

class RevError(Exception):
    """Base class for everything that stops a run."""


class ReadFailed(RevError):
    def __init__(self, cause):
        super().__init__(f"read error: {cause}")
        self.cause = cause


class WriteFailed(RevError):
    def __init__(self, cause):
        super().__init__(f"write error: {cause}")
        self.cause = cause


class Cancelled(RevError):
    def __init__(self, reason=None):
        super().__init__(reason or 'cancelled')
        self.reason = reason


# --- Line source ---

@contextmanager
def waiting_on_input(cancel):
    """Marks a CancelToken as blocked in a read for the duration of the block."""
    if not isinstance(cancel, CancelToken):
        yield
        return
    cancel.waiting = True
    try:
        yield
    finally:
        cancel.waiting = False


def read_lines(stream, cancel=NEVER):
    """
    A generator that reads a binary stream one line at a time and yields
    Line(number, text) tuples, numbered from 1.

    The '\\n' terminator (and a '\\r' right before it) is stripped. A last line
    without a terminator is still yielded. Each line is decoded as strict
    UTF-8; read and decode failures are raised as ReadFailed.
    """
    number = 0
    while True:
        try:
            with waiting_on_input(cancel):
                raw = stream.readline()
        except OSError as e:
            raise ReadFailed(e) from e
        if not raw:
            return

        if raw.endswith(b'\n'):
            raw = raw[:-1]
            if raw.endswith(b'\r'):
                raw = raw[:-1]

        try:
            text = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ReadFailed(e) from e

        number += 1
        yield Line(number, text)


# --- Reversal engine ---

def reverse_code_points(text: str, cancel=NEVER) -> str:
    """
    Reverses a string code point by code point.

    Two indexes walk in from both ends, swapping POLL_STRIDE code points at a
    time, and the cancel token is checked before each block. If it fires, the
    buffer is returned as it stands: the outer blocks are swapped and the
    middle is still in its original order.
    """
    buf = list(text)
    left, right = 0, len(buf)
    while right - left > 1:
        if cancel.is_cancelled():
            break
        step = min(POLL_STRIDE, (right - left) // 2)
        head = buf[left:left + step]
        buf[left:left + step] = buf[right - step:right][::-1]
        buf[right - step:right] = head[::-1]
        left += step
        right -= step
    return ''.join(buf)


def reverse_words(text: str, cancel=NEVER) -> str:
    """
    Reverses every whitespace-delimited word on its own and joins the words
    with single spaces. Words not reached before cancellation are kept as is.
    """
    words = text.split()
    for i, word in enumerate(words):
        if i % WORD_POLL_STRIDE == 0 and cancel.is_cancelled():
            break
        words[i] = reverse_code_points(word, cancel)
    return ' '.join(words)


_TRANSFORMS = {
    ReversalPolicy.WHOLE_LINE: reverse_code_points,
    ReversalPolicy.PER_WORD: reverse_words,
}


def transform_for(policy):
    """Returns the per-line reversal function for a policy."""
    return _TRANSFORMS[ReversalPolicy(policy)]


def reverse(text: str, policy=ReversalPolicy.WHOLE_LINE, cancel=None) -> str:
    """Reverses one line under the given policy. Never raises on cancellation."""
    return transform_for(policy)(text, cancel or NEVER)


# --- Stream driver ---

def _write_line(outstream, text):
    try:
        outstream.write(text.encode('utf-8') + b'\n')
        outstream.flush()
    except (OSError, ValueError) as e:
        # ValueError is what a closed file object raises on write.
        raise WriteFailed(e) from e


def run(instream, outstream, policy=ReversalPolicy.WHOLE_LINE, cancel=None) -> int:
    """
    Reverses every line of a binary input stream onto a binary output stream
    and returns the number of lines written.

    The token is checked before each line and polled while a line is being
    reversed. A line that was interrupted part way is dropped rather than
    written, so the output never holds a half-reversed line. Raises
    Cancelled, ReadFailed or WriteFailed; each stops the run for good.
    """
    cancel = cancel or NEVER
    transform = transform_for(policy)
    written = 0

    for line in read_lines(instream, cancel):
        if cancel.is_cancelled():
            raise Cancelled(getattr(cancel, 'reason', None))

        result = transform(line.text, cancel)
        if cancel.is_cancelled():
            raise Cancelled(getattr(cancel, 'reason', None))

        _write_line(outstream, result)
        written += 1

    return written


# --- Command line ---

def build_parser():
    parser = argparse.ArgumentParser(
        prog='rev',
        description="Reverse the order of characters in every line of a file.",
        usage="%(prog)s [-s] [-t seconds] [file ...]"
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '-s', '--separate',
        action='store_true',
        help='Reverse each word separately instead of the whole line.'
    )
    parser.add_argument(
        '-t', '--timeout',
        type=float,
        metavar='seconds',
        help='Give up after this many seconds.'
    )
    parser.add_argument(
        'files',
        nargs='*',
        help='One or more files to process. Reads from stdin if none are given.'
    )
    return parser


def install_handlers(token, timeout=None):
    """
    Routes Ctrl-C and the timeout alarm into the cancel token. While lines
    are being processed they are seen at the next poll in run(). A read
    blocked on input would never reach a poll, so there the handler raises
    Cancelled straight away to unwind it.
    Returns a function that puts the previous handlers back.
    """
    previous = {}

    def cancel(reason):
        token.cancel(reason)
        if token.waiting:
            raise Cancelled(token.reason)

    def on_interrupt(signum, frame):
        cancel('interrupted')

    def on_alarm(signum, frame):
        cancel('timed out')

    previous[signal.SIGINT] = signal.signal(signal.SIGINT, on_interrupt)
    if timeout:
        previous[signal.SIGALRM] = signal.signal(signal.SIGALRM, on_alarm)
        signal.setitimer(signal.ITIMER_REAL, timeout)

    def restore():
        if timeout:
            signal.setitimer(signal.ITIMER_REAL, 0)
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return restore


def process_file(file_name, outstream, policy, token):
    """Runs one named file (or '-' for stdin) through the reverser."""
    if file_name == '-':
        # sys.stdin is None when the process was started with stdin closed.
        if sys.stdin is None:
            raise OSError(errno.EBADF, os.strerror(errno.EBADF), '-')
        return run(sys.stdin.buffer, outstream, policy, token)

    if os.path.isdir(file_name):
        raise IsADirectoryError(errno.EISDIR, 'Is a directory', file_name)
    with open(file_name, 'rb') as fh:
        return run(fh, outstream, policy, token)


def main(argv=None):
    """Parses arguments and runs the line-reversing logic."""
    parser = build_parser()
    args = parser.parse_args(argv)
    program_name = parser.prog

    if args.timeout is not None and args.timeout <= 0:
        print(f"{program_name}: illegal timeout value '{args.timeout:g}'", file=sys.stderr)
        sys.exit(EX_FAILURE)

    policy = ReversalPolicy.from_separate(args.separate)
    token = CancelToken()
    outstream = sys.stdout.buffer
    exit_status = EX_SUCCESS

    restore = install_handlers(token, args.timeout)
    try:
        for file_name in args.files or ['-']:
            process_file(file_name, outstream, policy, token)
    except IsADirectoryError as e:
        print(f"{program_name}: '{e.filename}' is a directory", file=sys.stderr)
        exit_status = EX_FAILURE
    except OSError as e:
        print(f"{program_name}: cannot open '{e.filename}': {e.strerror}", file=sys.stderr)
        exit_status = EX_FAILURE
    except RevError as e:
        print(f"{program_name}: {e}", file=sys.stderr)
        exit_status = EX_FAILURE
    finally:
        restore()

    sys.exit(exit_status)


if __name__ == "__main__":
    main()
